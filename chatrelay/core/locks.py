"""
Key-scoped locking primitives.

``StripedLock`` guards short synchronous critical sections (store and
rate-limiter bookkeeping). ``KeyedAsyncLock`` serializes long-running async
work per key and forgets a key once nobody holds or waits for it.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

DEFAULT_STRIPES = 64


class StripedLock:
    """Fixed pool of locks; a key always maps to the same stripe."""

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes <= 0:
            raise ValueError("stripes must be positive")
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]


class KeyedAsyncLock:
    """One FIFO asyncio lock per key, created on demand."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]
