"""
Per-key asyncio locks.

Used to run remote cart calls for the same product one at a time, in the
order they were issued. asyncio.Lock wakes waiters in FIFO order, so calls
that enter lock(key) in sequence also leave it in sequence.

Locks are created lazily and dropped once nobody holds or waits for them.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:
    """Registry of asyncio.Lock objects keyed by an arbitrary hashable."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def lock(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        """Number of keys currently held or awaited (useful for tests)."""
        return len(self._locks)
