"""
Keyed Locks

One ``asyncio.Lock`` per key, created on demand and discarded when the last
holder or waiter releases it. Different keys never contend.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Tuple


class KeyedLocks:
    """
    Per-key mutual exclusion for coroutines on one event loop.

    Example:
        locks = KeyedLocks()
        async with locks.hold(("t1", "orders", "1001")):
            ...
    """

    def __init__(self):
        # key -> (lock, holders + waiters)
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)

        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)
