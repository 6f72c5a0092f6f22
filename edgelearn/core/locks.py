"""
EdgeLearn Core - Per-User Write Serialization

Each user's model record has a single writer at a time. Different users
never contend; locks are created on demand and dropped once idle.
"""

from typing import Dict
from contextlib import asynccontextmanager
import asyncio


class UserLocks:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str):
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._refs[user_id] = self._refs.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[user_id] -= 1
            if self._refs[user_id] == 0:
                del self._refs[user_id]
                self._locks.pop(user_id, None)

    def locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ['UserLocks']
