"""In-process lock table keyed by an arbitrary hashable key."""
import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLocks:
    """
    One asyncio.Lock per key, created on first use and discarded once the
    last holder or waiter is gone, so the table only holds keys in use.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: Counter = Counter()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
