"""
Sliding-window rate limiting per identity.

An identity may be admitted at most ``cap`` times within any trailing window.
Timestamps come from a monotonic clock so wall-clock jumps never reopen or
close a window.
"""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable

from chatrelay.core import RateLimitedError, StripedLock, get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Per-identity sliding window; check-and-record is atomic per identity."""

    def __init__(
        self,
        cap: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        stripes: StripedLock | None = None,
    ) -> None:
        self.cap = cap
        self.window_seconds = window_seconds
        self._clock = clock
        self._stripes = stripes or StripedLock()
        self._windows: dict[str, deque[float]] = {}

    @property
    def enabled(self) -> bool:
        return self.cap > 0

    def _expire(self, window: deque[float], now: float) -> None:
        # A timestamp exactly at the window edge still counts.
        cutoff = now - self.window_seconds
        while window and window[0] < cutoff:
            window.popleft()

    def try_admit(self, identity: str, now: float | None = None) -> bool:
        """Admit and record one request, or reject without recording."""
        if not self.enabled:
            return True
        if now is None:
            now = self._clock()
        with self._stripes.for_key(identity):
            window = self._windows.setdefault(identity, deque())
            self._expire(window, now)
            if len(window) >= self.cap:
                return False
            window.append(now)
            return True

    def retry_after(self, identity: str, now: float | None = None) -> float:
        """Seconds until the oldest recorded timestamp leaves the window."""
        if now is None:
            now = self._clock()
        with self._stripes.for_key(identity):
            window = self._windows.get(identity)
            if not window:
                return 0.0
            self._expire(window, now)
            if len(window) < self.cap:
                return 0.0
            return max(0.0, window[0] + self.window_seconds - now)

    def check(self, identity: str, now: float | None = None) -> None:
        """Admit ``identity`` or raise RateLimitedError."""
        if now is None:
            now = self._clock()
        if self.try_admit(identity, now):
            return
        retry_after = self.retry_after(identity, now)
        logger.warning(
            "Rate limit exceeded",
            data={"identity": identity, "retry_after_seconds": round(retry_after, 3)},
        )
        raise RateLimitedError(
            "Too many requests, please try again later",
            details={
                "retry_after_seconds": math.ceil(retry_after),
                "limit": self.cap,
                "window_seconds": self.window_seconds,
            },
        )

    def sweep(self, now: float | None = None) -> int:
        """Drop expired timestamps everywhere and forget idle identities."""
        if now is None:
            now = self._clock()
        removed = 0
        for identity in list(self._windows):
            with self._stripes.for_key(identity):
                window = self._windows.get(identity)
                if window is None:
                    continue
                self._expire(window, now)
                if not window:
                    del self._windows[identity]
                    removed += 1
        return removed

    def tracked_identities(self) -> int:
        return len(self._windows)
