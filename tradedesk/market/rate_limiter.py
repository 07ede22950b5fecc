"""Token-bucket limiter for outbound candle requests.

The bucket holds up to ``capacity`` tokens and refills continuously at
``refill_per_second``.  Each request takes one token; callers wait in
turn when the bucket is empty.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger("tradedesk.ratelimit")

DEFAULT_MAX_WAITERS = 200
DEFAULT_TIMEOUT_SECONDS = 60.0


class RateLimitError(RuntimeError):
    """Raised when a request slot cannot be obtained in time, or the queue is full."""


class TokenBucket:
    """Async token bucket.

    Args:
        capacity: Burst size.
        refill_per_second: Sustained request rate.
        max_waiters: Callers allowed to queue before new ones are refused.
        clock: Monotonic seconds (tests inject a fake).
        sleep: Awaitable sleep (tests inject one that advances the fake clock).
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        max_waiters: int = DEFAULT_MAX_WAITERS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity < 1 or refill_per_second <= 0:
            raise ValueError(
                f"capacity must be >= 1 and refill rate > 0, "
                f"got {capacity} and {refill_per_second}"
            )
        self._capacity = float(capacity)
        self._rate = refill_per_second
        self._max_waiters = max_waiters
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._waiters = 0
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self._capacity, self._tokens + (now - self._updated) * self._rate)
        self._updated = now

    async def acquire(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> float:
        """Take one token, waiting for a refill if needed.

        Returns the seconds spent waiting.

        Raises:
            RateLimitError: The wait queue is full, or no token would be
                available within *timeout*.
        """
        if self._waiters >= self._max_waiters:
            raise RateLimitError(
                f"Rate limit queue full ({self._waiters} waiting)"
            )
        self._waiters += 1
        try:
            async with self._lock:
                waited = 0.0
                self._refill()
                while self._tokens < 1:
                    delay = (1 - self._tokens) / self._rate
                    if waited + delay > timeout:
                        raise RateLimitError(
                            f"No request slot within {timeout:.0f}s"
                        )
                    await self._sleep(delay)
                    waited += delay
                    self._refill()
                self._tokens -= 1
        finally:
            self._waiters -= 1
        if waited:
            logger.debug("Waited %.2fs for a request slot", waited)
        return waited

    def state(self) -> dict:
        self._refill()
        return {
            "available": int(self._tokens),
            "capacity": int(self._capacity),
            "waiting": self._waiters,
        }
