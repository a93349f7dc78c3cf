"""
Блокировки по id пользователя

Запись о блокировке живет, пока её кто-то держит или ждёт; после
освобождения последним владельцем она удаляется, так что словарь не
растёт с числом пользователей.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class UserLocks:
    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, user_id: int):
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]
                del self._locks[user_id]
