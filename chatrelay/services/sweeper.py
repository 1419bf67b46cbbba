"""Background task that periodically expires idle conversations."""

from __future__ import annotations

import asyncio
import contextlib

from chatrelay.core import get_logger
from chatrelay.services.chat_service import ChatOrchestrator

logger = get_logger(__name__)


class ExpirySweeper:
    """Runs ``force_expire_sweep`` every ``interval_seconds`` until stopped."""

    def __init__(self, orchestrator: ChatOrchestrator, interval_seconds: float) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval_seconds <= 0 or self.running:
            return
        self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        logger.info("Expiry sweeper started", data={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.orchestrator.force_expire_sweep()
            except Exception as exc:
                logger.exception("Expiry sweep failed", exc_info=exc)
