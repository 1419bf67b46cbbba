"""Value types shared by the relay services."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(UTC)


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Turn:
    """One immutable message in a conversation."""

    role: Role
    content: str
    timestamp: datetime


@dataclass(frozen=True)
class Conversation:
    """Point-in-time view of a stored conversation."""

    conversation_id: str
    owner_identity: str
    turns: tuple[Turn, ...]
    created_at: datetime
    last_activity: datetime


@dataclass(frozen=True)
class TurnRequest:
    """A caller's chat turn, validated by the orchestrator before use."""

    conversation_id: str
    owner_identity: str
    message_text: str
    model_name: str
    temperature: float
    system_prompt: str = ""


@dataclass(frozen=True)
class TurnResult:
    """Outcome of a buffered exchange."""

    message_id: str
    content: str
    timestamp: datetime
    model: str


@dataclass(frozen=True)
class ChunkEvent:
    """Incremental output of a streaming exchange.

    Exactly one of three shapes: a delta (``final`` False), a clean completion
    carrying ``message_id``, or a failed completion carrying ``failure``.
    """

    delta: str = ""
    final: bool = False
    message_id: str | None = None
    failure: str | None = None

    @classmethod
    def of_delta(cls, text: str) -> ChunkEvent:
        return cls(delta=text)

    @classmethod
    def completed(cls, message_id: str) -> ChunkEvent:
        return cls(final=True, message_id=message_id)

    @classmethod
    def failed(cls, reason: str) -> ChunkEvent:
        return cls(final=True, failure=reason)
