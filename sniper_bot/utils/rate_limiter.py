"""
Rate Limiting Utilities

Token bucket shared by every outbound trade attempt, so retries from many
positions firing in the same second stay under the venue's request budget.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token bucket pacing trade submissions.

    Bursts up to `capacity` attempts, then refills at `rate` per second.
    Waiters queue on a lock so they are served in arrival order.

    Usage:
        limiter = TokenBucket(rate=10.0, capacity=20)
        await limiter.acquire()
    """

    def __init__(
        self,
        rate: float = 10.0,
        capacity: int = 20,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self.tokens = float(capacity)
        self.last_refill = clock()
        self.throttled = 0
        self.total_wait = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self, tokens: int = 1) -> float:
        """Take `tokens`, sleeping until they are available. Returns seconds waited."""
        async with self._lock:
            self._refill()
            missing = tokens - self.tokens
            if missing <= 0:
                self.tokens -= tokens
                return 0.0

            wait_time = missing / self.rate
            self.throttled += 1
            self.total_wait += wait_time
            logger.debug("Trade pacing: waiting %.2fs for %d token(s)", wait_time, tokens)
            await self._sleep(wait_time)

            self._refill()
            self.tokens = max(0.0, self.tokens - tokens)
            return wait_time

    def _refill(self) -> None:
        now = self._clock()
        self.tokens = min(float(self.capacity), self.tokens + (now - self.last_refill) * self.rate)
        self.last_refill = now

    def get_status(self) -> dict:
        self._refill()
        return {
            "tokens": round(self.tokens, 3),
            "capacity": self.capacity,
            "rate": self.rate,
            "throttled": self.throttled,
            "total_wait_sec": round(self.total_wait, 3),
        }
