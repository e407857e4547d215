"""
Per-key asyncio locks
"""
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager


class KeyedLock:
    """
    Serializes coroutines that share a key (e.g. a user id) while letting
    different keys proceed concurrently. Only guards a single process.
    """

    def __init__(self):
        self._locks = defaultdict(asyncio.Lock)
        self._waiters = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str):
        self._waiters[key] += 1
        lock = self._locks[key]
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())
