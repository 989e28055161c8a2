"""
Per-user asyncio locks

Serializes read-evaluate-write sequences for one user while letting
different users proceed independently.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """Hands out one asyncio.Lock per user id"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        """Hold the lock for user_id for the duration of the block"""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        self._waiters[user_id] = self._waiters.get(user_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._waiters[user_id] -= 1
            # Drop idle locks so the registry does not grow with every user seen
            if self._waiters[user_id] == 0:
                del self._waiters[user_id]
                del self._locks[user_id]

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
