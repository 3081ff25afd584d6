from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ShiftLockRegistry:
    """One in-process writer per shift id.

    Cross-process safety comes from the shift's version column and row locks;
    this keeps same-process contenders from even reaching the database together.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, shift_id: int) -> AsyncIterator[None]:
        key = int(shift_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def is_locked(self, shift_id: int) -> bool:
        lock = self._locks.get(int(shift_id))
        return bool(lock and lock.locked())
