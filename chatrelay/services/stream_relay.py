"""Server-Sent Events framing for incremental exchanges."""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from chatrelay.core import MetricsRegistry, get_logger
from chatrelay.services.channel import TurnStream
from chatrelay.services.types import ChunkEvent

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
SSE_MEDIA_TYPE = "text/event-stream"

DisconnectCheck = Callable[[], Awaitable[bool] | bool]


def event_payload(event: ChunkEvent) -> dict[str, Any]:
    """Wire object for one event: ``delta``, ``done`` and at most one of ``completionId``/``error``."""
    if not event.final:
        return {"delta": event.delta, "done": False}
    if event.failure is not None:
        return {"delta": "", "done": True, "error": event.failure}
    return {"delta": "", "done": True, "completionId": event.message_id}


def format_sse_event(event: ChunkEvent) -> str:
    data = json.dumps(event_payload(event), separators=(",", ":"), ensure_ascii=False)
    return f"data: {data}\n\n"


def format_sse_comment(comment: str = "ping") -> str:
    """Serialize an SSE comment (used for keep-alives)."""
    return f": {comment}\n\n"


class StreamRelay:
    """
    Forwards a TurnStream to one consumer as SSE text.

    Stops at the first ``done`` unit. If the consumer goes away (the
    disconnect check turns true, or the generator is closed or cancelled)
    the stream is closed; the producer's fate is the stream's own policy.
    """

    def __init__(
        self,
        metrics: MetricsRegistry | None = None,
        ping_interval: float = 0.0,
    ) -> None:
        self.metrics = metrics or MetricsRegistry()
        self.ping_interval = ping_interval

    async def relay(
        self,
        stream: TurnStream,
        is_disconnected: DisconnectCheck | None = None,
    ) -> AsyncIterator[str]:
        finished = False
        pending: asyncio.Task[ChunkEvent | None] | None = None
        timeout = self.ping_interval if self.ping_interval > 0 else None
        try:
            while True:
                if is_disconnected is not None and await _resolve(is_disconnected()):
                    break
                if pending is None:
                    pending = asyncio.ensure_future(stream.receive())
                done, _ = await asyncio.wait({pending}, timeout=timeout)
                if not done:
                    # Keep the receive pending so no event is lost.
                    yield format_sse_comment()
                    continue
                event = pending.result()
                pending = None
                if event is None:
                    break
                yield format_sse_event(event)
                if event.final:
                    finished = True
                    break
        finally:
            if pending is not None and not pending.done():
                pending.cancel()
            if not finished:
                self.metrics.increment("stream_disconnects_total")
                logger.info("Stream consumer disconnected")
            stream.close()


async def _resolve(value: Awaitable[bool] | bool) -> bool:
    if inspect.isawaitable(value):
        return bool(await value)
    return bool(value)
