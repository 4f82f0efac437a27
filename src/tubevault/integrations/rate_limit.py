from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque


class RateLimiter:
    """Caps concurrent calls and the number of calls started per period."""

    def __init__(
        self,
        max_calls: int,
        period: float = 1.0,
        max_concurrent: int = 16,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self._max_calls = max_calls
        self._period = period
        self._clock = clock
        self._sleep = sleep
        self._started: Deque[float] = deque()
        self._guard = asyncio.Lock()
        self._concurrency = asyncio.Semaphore(max(1, max_concurrent))

    async def _wait_for_slot(self) -> None:
        async with self._guard:
            while True:
                now = self._clock()
                while self._started and now - self._started[0] >= self._period:
                    self._started.popleft()
                if len(self._started) < self._max_calls:
                    self._started.append(now)
                    return
                await self._sleep(self._period - (now - self._started[0]))

    async def __aenter__(self) -> "RateLimiter":
        await self._concurrency.acquire()
        try:
            await self._wait_for_slot()
        except BaseException:
            self._concurrency.release()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._concurrency.release()
