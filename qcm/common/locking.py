"""
Keyed asyncio locks.

Serializes coroutines that act on the same key (an attempt ID, or a
student/quiz pair) while letting different keys proceed concurrently.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Dict


class KeyedLock:
    """Registry of asyncio.Lock objects created on demand per key."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            # Drop idle locks so the registry does not grow with every attempt
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
