"""
In-memory conversation history with time-based expiry.

Each conversation is guarded by the stripe its id hashes to, so mutations on
one conversation are linearizable while unrelated conversations proceed in
parallel. Callers only ever receive immutable snapshots.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from chatrelay.core import NotFoundError, StripedLock, get_logger
from chatrelay.services.types import Conversation, Turn, utcnow

logger = get_logger(__name__)


@dataclass
class _Record:
    conversation_id: str
    owner_identity: str
    created_at: datetime
    last_activity: datetime
    turns: list[Turn] = field(default_factory=list)

    def snapshot(self) -> Conversation:
        return Conversation(
            conversation_id=self.conversation_id,
            owner_identity=self.owner_identity,
            turns=tuple(self.turns),
            created_at=self.created_at,
            last_activity=self.last_activity,
        )


class ConversationStore:
    """Owns every Conversation; keyed by conversation id."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        stripes: StripedLock | None = None,
    ) -> None:
        self._clock = clock
        self._stripes = stripes or StripedLock()
        self._records: dict[str, _Record] = {}

    def get(self, conversation_id: str) -> Conversation | None:
        with self._stripes.for_key(conversation_id):
            record = self._records.get(conversation_id)
            return record.snapshot() if record else None

    def create_if_absent(self, conversation_id: str, owner_identity: str) -> Conversation:
        """Return the existing conversation, or register a new one owned by ``owner_identity``.

        Ownership is fixed at first creation; a later caller's identity is ignored.
        """
        with self._stripes.for_key(conversation_id):
            record = self._records.get(conversation_id)
            if record is None:
                now = self._clock()
                record = _Record(
                    conversation_id=conversation_id,
                    owner_identity=owner_identity,
                    created_at=now,
                    last_activity=now,
                )
                self._records[conversation_id] = record
                logger.debug(
                    "Conversation created",
                    data={"conversation_id": conversation_id, "owner": owner_identity},
                )
            return record.snapshot()

    def append_turn(self, conversation_id: str, turn: Turn) -> None:
        self.append_turns(conversation_id, (turn,))

    def append_turns(self, conversation_id: str, turns: Iterable[Turn]) -> None:
        """Append turns in one critical section; raises NotFoundError for unknown ids."""
        batch = list(turns)
        with self._stripes.for_key(conversation_id):
            record = self._records.get(conversation_id)
            if record is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            record.turns.extend(batch)
            # last_activity never moves backwards, even with a skewed clock.
            record.last_activity = max(record.last_activity, self._clock())

    def sweep_expired(
        self,
        now: datetime,
        max_age: timedelta,
        skip: Callable[[str], bool] | None = None,
    ) -> int:
        """Remove conversations idle for longer than ``max_age``; returns how many.

        A conversation idle for exactly ``max_age`` is kept. Ids for which
        ``skip`` returns True are left alone regardless of age.
        """
        removed = 0
        for conversation_id in list(self._records):
            if skip is not None and skip(conversation_id):
                continue
            with self._stripes.for_key(conversation_id):
                record = self._records.get(conversation_id)
                if record is not None and now - record.last_activity > max_age:
                    del self._records[conversation_id]
                    removed += 1
        if removed:
            logger.info("Cleaned expired conversations", data={"removed": removed})
        return removed

    def count(self) -> int:
        return len(self._records)

    def exists(self, conversation_id: str) -> bool:
        return conversation_id in self._records

    def delete(self, conversation_id: str) -> bool:
        with self._stripes.for_key(conversation_id):
            return self._records.pop(conversation_id, None) is not None
