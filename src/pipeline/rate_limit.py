"""Async token bucket for pacing calls to external providers."""

import asyncio
import time
from typing import Awaitable, Callable, Optional


class TokenBucket:
    """Token bucket refilled continuously at ``rate_per_minute``.

    ``acquire()`` waits until a token is available. The bucket starts full so
    small batches run without delay.
    """

    def __init__(
        self,
        rate_per_minute: float,
        capacity: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")

        self.rate_per_second = rate_per_minute / 60.0
        self.capacity = capacity if capacity is not None else max(1.0, rate_per_minute / 60.0)
        self._tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._last_refill = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                await self._sleep((1 - self._tokens) / self.rate_per_second)
