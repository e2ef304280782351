"""
Token bucket used to throttle calls to external providers
"""

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """Async token bucket.

    ``acquire`` suspends the caller until a token is available instead of
    failing, so a burst of workers is smoothed to the configured rate.
    """

    def __init__(
        self,
        name: str,
        rate_per_minute: float,
        burst: int = 1,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], "asyncio.Future"]] = None,
    ) -> None:
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.name = name
        self.rate_per_second = rate_per_minute / 60.0
        self.capacity = max(1, burst)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._tokens = float(self.capacity)
        self._updated_at = self._clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
        self._updated_at = now

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, waiting for the bucket to refill when empty"""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait_seconds = (1 - self._tokens) / self.rate_per_second
                logger.debug("Rate limiter %s exhausted, waiting %.2fs", self.name, wait_seconds)
                await self._sleep(wait_seconds)
