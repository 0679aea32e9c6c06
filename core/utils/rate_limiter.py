"""
Minimum-interval rate limiter for outbound broker and market-data requests.

Each limiter is an independent value owned by whoever holds it (a broker
client, a market-data client, the fan-out executor per account). There is no
module-level state, so independent instances never interfere.
"""

import asyncio
import time
import logging
from typing import Awaitable, Callable, Optional


class RateLimiter:
    """Enforces a minimum delay between consecutive acquisitions.

    Acquisitions are serialized: concurrent callers queue on an internal lock
    and each one waits until `min_interval` seconds have passed since the
    previous caller was released.
    """

    def __init__(
        self,
        min_interval: float,
        name: str = "rate_limiter",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

        self.logger = logging.getLogger(f"{__name__}.RateLimiter")

    async def wait(self) -> float:
        """Block until the next request may be sent. Returns seconds waited."""
        async with self._lock:
            waited = 0.0
            if self._last_request is not None and self.min_interval > 0:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self.logger.debug(f"{self.name}: waiting {waited:.3f}s before next request")
                    await self._sleep(waited)
            self._last_request = self._clock()
            return waited

    async def __aenter__(self) -> "RateLimiter":
        await self.wait()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None
