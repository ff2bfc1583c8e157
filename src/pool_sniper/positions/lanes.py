"""Single-lane entry lock and the sell-in-flight counter."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class ExclusivityToken:
    """Non-blocking lock held for one whole entry lifecycle."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    def locked(self) -> bool:
        return self._lock.locked()

    async def try_acquire(self) -> bool:
        """Take the token if free. Never waits for another holder."""
        if self._lock.locked():
            return False
        await self._lock.acquire()
        return True

    def release(self) -> None:
        self._lock.release()


class SellInFlightCounter:
    """Number of sells in progress. Mutations are serialized by their own lock."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    async def increment(self) -> int:
        async with self._lock:
            self._count += 1
            return self._count

    async def decrement(self) -> int:
        async with self._lock:
            self._count = max(0, self._count - 1)
            return self._count

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        await self.increment()
        try:
            yield
        finally:
            await self.decrement()
