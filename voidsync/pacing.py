from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

log = logging.getLogger(__name__)


class TokenBucket:
    """Per-provider request pacer.

    Holds up to *capacity* tokens refilled at *rate_per_sec*. :meth:`acquire`
    waits until a token is available. Clock and sleep are injectable so tests
    can run without real delays.
    """

    def __init__(
        self,
        rate_per_sec: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be positive")
        self._lock = asyncio.Lock()
        self._rate = rate_per_sec
        self._capacity = max(1, capacity)
        self._tokens = float(self._capacity)
        self._clock = clock
        self._sleep = sleep
        self._last = clock()

    @classmethod
    def from_interval(cls, seconds: float, **kwargs) -> TokenBucket:
        """One request every *seconds*."""
        return cls(1.0 / seconds, **kwargs)

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self._capacity, self._tokens + (now - self._last) * self._rate)
        self._last = now

    async def acquire(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait = (1 - self._tokens) / self._rate
                log.debug("Pacer waiting %.3fs", wait)
                await self._sleep(wait)
                self._refill()
            self._tokens = max(0.0, self._tokens - 1)
