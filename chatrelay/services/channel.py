"""Bounded hand-off between a producer task and a single consumer."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

from chatrelay.services.types import ChunkEvent


class ChunkChannel:
    """
    Bounded FIFO of ChunkEvents.

    Once closed, further sends are discarded so a producer never blocks on a
    consumer that has gone away. Iteration ends after a final event or close.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[ChunkEvent] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: ChunkEvent) -> bool:
        """Enqueue ``event``; returns False when the channel is closed."""
        if self._closed:
            return False
        await self._queue.put(event)
        return not self._closed

    def close(self) -> None:
        """Detach the consumer. Pending events are discarded."""
        if self._closed:
            return
        self._closed = True
        # Draining frees a producer blocked in put().
        with contextlib.suppress(asyncio.QueueEmpty):
            while True:
                self._queue.get_nowait()

    def finish(self, event: ChunkEvent) -> None:
        """Deliver a final event without waiting, making room if the queue is full."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._queue.put_nowait(event)

    async def receive(self) -> ChunkEvent | None:
        """Next event, or None once the channel is closed."""
        if self._closed:
            return None
        return await self._queue.get()

    def __aiter__(self) -> AsyncIterator[ChunkEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChunkEvent]:
        while True:
            event = await self.receive()
            if event is None:
                return
            yield event
            if event.final:
                return


class TurnStream:
    """
    Consumer side of an incremental exchange.

    Iterating yields delta events followed by exactly one final event.
    ``close`` detaches the consumer; whether the producer keeps running is
    decided by the orchestrator's disconnect policy.
    """

    def __init__(
        self,
        channel: ChunkChannel,
        task: asyncio.Task[None],
        *,
        cancel_on_close: bool = False,
    ) -> None:
        self.channel = channel
        self.task = task
        self._cancel_on_close = cancel_on_close

    def __aiter__(self) -> AsyncIterator[ChunkEvent]:
        return self.channel.__aiter__()

    async def receive(self) -> ChunkEvent | None:
        return await self.channel.receive()

    def close(self) -> None:
        self.channel.close()
        if self._cancel_on_close and not self.task.done():
            self.task.cancel()

    async def aclose(self) -> None:
        self.close()

    async def wait_closed(self) -> None:
        """Wait for the producer to finish (it never raises out of here)."""
        with contextlib.suppress(asyncio.CancelledError):
            await self.task
