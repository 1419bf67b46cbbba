"""Chat orchestration: admission, validation, upstream exchange, and commit."""

from __future__ import annotations

import asyncio
import inspect
import math
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from chatrelay.config.relay import RateLimitConfig, SessionConfig
from chatrelay.core import (
    AppError,
    ForbiddenError,
    InternalError,
    InvalidParameterError,
    KeyedAsyncLock,
    MetricsRegistry,
    NotFoundError,
    RateLimitedError,
    TooLongError,
    UpstreamError,
    get_logger,
    stream_id_ctx,
)
from chatrelay.providers import (
    BaseProvider,
    ChatMessage,
    ChatRequest,
    ProviderBinding,
    ProviderRegistry,
)
from chatrelay.services.channel import ChunkChannel, TurnStream
from chatrelay.services.conversation_store import ConversationStore
from chatrelay.services.rate_limiter import RateLimiter
from chatrelay.services.types import (
    ChunkEvent,
    Conversation,
    Role,
    Turn,
    TurnRequest,
    TurnResult,
    new_message_id,
    utcnow,
)

logger = get_logger(__name__)

STREAM_CANCELLED_MESSAGE = "Stream cancelled"

ChunkCallback = Callable[[ChunkEvent], Awaitable[None] | None]


@dataclass
class ActiveStream:
    """Metadata for an in-flight incremental exchange."""

    stream_id: str
    identity: str
    conversation_id: str
    started_at: float
    task: asyncio.Task | None = None


class ActiveStreamManager:
    """Tracks producer tasks so they can be cancelled at shutdown."""

    def __init__(self, metrics: MetricsRegistry) -> None:
        self._streams: dict[str, ActiveStream] = {}
        self._lock = asyncio.Lock()
        self._metrics = metrics

    async def register(
        self,
        stream_id: str,
        identity: str,
        conversation_id: str,
        task: asyncio.Task | None,
    ) -> None:
        async with self._lock:
            self._streams[stream_id] = ActiveStream(
                stream_id=stream_id,
                identity=identity,
                conversation_id=conversation_id,
                started_at=time.monotonic(),
                task=task,
            )
            self._metrics.set_gauge("active_streams", float(len(self._streams)))

    async def unregister(self, stream_id: str) -> ActiveStream | None:
        async with self._lock:
            stream = self._streams.pop(stream_id, None)
            self._metrics.set_gauge("active_streams", float(len(self._streams)))
        return stream

    async def cancel_all(self) -> int:
        """Cancel every running producer; returns how many were signalled."""
        async with self._lock:
            streams = list(self._streams.values())
        cancelled = 0
        for stream in streams:
            if stream.task and not stream.task.done():
                stream.task.cancel()
                cancelled += 1
        return cancelled

    def __len__(self) -> int:
        return len(self._streams)


class ChatOrchestrator:
    """
    Runs chat turns against the configured providers.

    Every turn goes through the same gate: the ownership pre-check, then
    admission (which charges a rate-limit slot), then validation. Nothing is
    written to the store until the upstream exchange has succeeded, and the
    user and assistant turns are committed together.

    Exchanges on one conversation are serialized by a per-conversation lock
    held from the history snapshot through commit, so turns land in the order
    the calls started and each exchange sees every earlier one.
    """

    def __init__(
        self,
        store: ConversationStore,
        limiter: RateLimiter,
        registry: ProviderRegistry,
        limits: RateLimitConfig | None = None,
        session: SessionConfig | None = None,
        *,
        metrics: MetricsRegistry | None = None,
        queue_size: int = 64,
        complete_on_disconnect: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.limiter = limiter
        self.registry = registry
        self.limits = limits or RateLimitConfig()
        self.session = session or SessionConfig()
        self.metrics = metrics or MetricsRegistry()
        self.queue_size = queue_size
        self.complete_on_disconnect = complete_on_disconnect
        self._clock = clock
        self._exchange_locks = KeyedAsyncLock()
        self.manager = ActiveStreamManager(self.metrics)

    # Gate

    def validate(self, request: TurnRequest) -> ProviderBinding:
        """Check a request without side effects; returns the binding serving its model."""
        binding = self.registry.resolve(request.model_name)

        temperature = request.temperature
        if (
            isinstance(temperature, bool)
            or not isinstance(temperature, (int, float))
            or math.isnan(temperature)
            or not 0 <= temperature <= 1
        ):
            raise InvalidParameterError(
                "Temperature must be between 0 and 1",
                details={"temperature": temperature},
            )

        if not request.message_text or not request.message_text.strip():
            raise InvalidParameterError("Message must not be empty")

        max_message = self.limits.max_message_length
        if len(request.message_text) > max_message:
            raise TooLongError(
                f"Message exceeds maximum length of {max_message} characters",
                details={"field": "message", "max_length": max_message},
            )

        max_prompt = self.limits.max_system_prompt_length
        if request.system_prompt and len(request.system_prompt) > max_prompt:
            raise TooLongError(
                f"System prompt exceeds maximum length of {max_prompt} characters",
                details={"field": "systemPrompt", "max_length": max_prompt},
            )
        return binding

    def _check_owner(self, conversation: Conversation | None, identity: str) -> None:
        if conversation is not None and conversation.owner_identity != identity:
            logger.warning(
                "Conversation access denied",
                data={"conversation_id": conversation.conversation_id, "identity": identity},
            )
            raise ForbiddenError("Conversation belongs to another user")

    def _admit(self, identity: str) -> None:
        try:
            self.limiter.check(identity)
        except RateLimitedError:
            self.metrics.increment("rate_limit_rejections_total")
            raise

    def _gate(self, request: TurnRequest) -> ProviderBinding:
        self._check_owner(self.store.get(request.conversation_id), request.owner_identity)
        self._admit(request.owner_identity)
        return self.validate(request)

    # Exchange helpers

    def _open_conversation(self, request: TurnRequest) -> Conversation:
        conversation = self.store.create_if_absent(
            request.conversation_id, request.owner_identity
        )
        # Another identity may have created it between the pre-check and now.
        self._check_owner(conversation, request.owner_identity)
        self.metrics.set_gauge("conversations", float(self.store.count()))
        return conversation

    def _build_chat_request(
        self, request: TurnRequest, conversation: Conversation, *, stream: bool
    ) -> ChatRequest:
        messages: list[ChatMessage] = []
        if request.system_prompt:
            messages.append(ChatMessage(role=Role.SYSTEM.value, content=request.system_prompt))
        messages.extend(
            ChatMessage(role=turn.role.value, content=turn.content) for turn in conversation.turns
        )
        messages.append(ChatMessage(role=Role.USER.value, content=request.message_text))
        return ChatRequest(
            messages=messages,
            model=request.model_name,
            temperature=float(request.temperature),
            stream=stream,
        )

    def _commit(
        self,
        request: TurnRequest,
        received_at: datetime,
        content: str,
        completed_at: datetime,
    ) -> None:
        turns = (
            Turn(role=Role.USER, content=request.message_text, timestamp=received_at),
            Turn(role=Role.ASSISTANT, content=content, timestamp=completed_at),
        )
        try:
            self.store.append_turns(request.conversation_id, turns)
        except NotFoundError as exc:
            raise InternalError(
                context={"conversation_id": request.conversation_id, "reason": str(exc)}
            ) from exc
        self.metrics.increment("turns_committed_total", len(turns))
        logger.info(
            "Chat turn committed",
            data={
                "conversation_id": request.conversation_id,
                "model": request.model_name,
                "response_chars": len(content),
            },
        )

    # Buffered path

    async def send_turn(self, request: TurnRequest) -> TurnResult:
        """Run one buffered exchange and return the assistant's full reply."""
        binding = self._gate(request)
        adapter = self.registry.adapter_for(binding)
        received_at = self._clock()

        async with self._exchange_locks.hold(request.conversation_id):
            conversation = self._open_conversation(request)
            chat_request = self._build_chat_request(request, conversation, stream=False)
            try:
                response = await adapter.chat_once(chat_request)
            except UpstreamError:
                self.metrics.increment("upstream_errors_total")
                raise
            completed_at = self._clock()
            self._commit(request, received_at, response.content, completed_at)

        return TurnResult(
            message_id=new_message_id(),
            content=response.content,
            timestamp=completed_at,
            model=request.model_name,
        )

    # Incremental path

    async def stream_turn(self, request: TurnRequest) -> TurnStream:
        """
        Start an incremental exchange.

        Ownership, admission and validation errors are raised here, before a
        stream exists. Upstream failures arrive later as a final failed event.
        """
        binding = self._gate(request)
        adapter = self.registry.adapter_for(binding)
        channel = ChunkChannel(maxsize=self.queue_size)
        stream_id = str(uuid.uuid4())

        task = asyncio.create_task(
            self._produce(request, adapter, channel, stream_id),
            name=f"chat-stream-{stream_id}",
        )
        await self.manager.register(
            stream_id, request.owner_identity, request.conversation_id, task
        )
        logger.info(
            "Chat stream started",
            data={
                "stream_id": stream_id,
                "conversation_id": request.conversation_id,
                "provider": binding.provider_name,
                "model": request.model_name,
            },
        )
        return TurnStream(channel, task, cancel_on_close=not self.complete_on_disconnect)

    async def stream_turn_to(self, request: TurnRequest, on_chunk: ChunkCallback) -> None:
        """Drive an incremental exchange into ``on_chunk`` until its final event."""
        stream = await self.stream_turn(request)
        try:
            async for event in stream:
                result = on_chunk(event)
                if inspect.isawaitable(result):
                    await result
        finally:
            await stream.aclose()

    async def _produce(
        self,
        request: TurnRequest,
        adapter: BaseProvider,
        channel: ChunkChannel,
        stream_id: str,
    ) -> None:
        token = stream_id_ctx.set(stream_id)
        started = time.monotonic()
        received_at = self._clock()
        parts: list[str] = []
        try:
            async with self._exchange_locks.hold(request.conversation_id):
                conversation = self._open_conversation(request)
                chat_request = self._build_chat_request(request, conversation, stream=True)
                async for chunk in adapter.chat_stream(chat_request):
                    if chunk.content:
                        parts.append(chunk.content)
                        await channel.send(ChunkEvent.of_delta(chunk.content))
                self._commit(request, received_at, "".join(parts), self._clock())
            await channel.send(ChunkEvent.completed(new_message_id()))
        except asyncio.CancelledError:
            logger.info(
                "Chat stream cancelled",
                data={"stream_id": stream_id, "received_chars": sum(map(len, parts))},
            )
            channel.finish(ChunkEvent.failed(STREAM_CANCELLED_MESSAGE))
            raise
        except AppError as exc:
            if isinstance(exc, UpstreamError):
                self.metrics.increment("upstream_errors_total")
            logger.warning(
                "Provider error during chat stream",
                data={"stream_id": stream_id, "code": exc.code.value, "context": exc.context},
            )
            await channel.send(ChunkEvent.failed(exc.message))
        except Exception as exc:
            logger.exception(
                "Unexpected error during chat stream",
                exc_info=exc,
                data={"stream_id": stream_id},
            )
            await channel.send(ChunkEvent.failed(InternalError().message))
        finally:
            await self.manager.unregister(stream_id)
            self.metrics.observe("stream_duration_seconds", time.monotonic() - started)
            stream_id_ctx.reset(token)

    # Introspection and maintenance

    def list_supported_models(self) -> set[str]:
        return self.registry.list_models()

    def conversation_count(self) -> int:
        return self.store.count()

    def force_expire_sweep(self, now: datetime | None = None) -> int:
        """Expire idle conversations and prune rate windows; returns conversations removed."""
        if now is None:
            now = self._clock()
        removed = self.store.sweep_expired(
            now, self.session.expiration, skip=self._exchange_locks.locked
        )
        pruned = self.limiter.sweep()
        self.metrics.increment("conversations_expired_total", removed)
        self.metrics.set_gauge("conversations", float(self.store.count()))
        logger.debug(
            "Expiry sweep finished",
            data={"conversations_removed": removed, "rate_windows_removed": pruned},
        )
        return removed

    def delete_conversation(self, conversation_id: str) -> bool:
        deleted = self.store.delete(conversation_id)
        if deleted:
            self.metrics.set_gauge("conversations", float(self.store.count()))
            logger.info("Conversation deleted", data={"conversation_id": conversation_id})
        return deleted

    async def aclose(self) -> None:
        """Cancel in-flight producers; provider clients are closed by the registry owner."""
        cancelled = await self.manager.cancel_all()
        if cancelled:
            logger.info("Cancelled active chat streams", data={"count": cancelled})
