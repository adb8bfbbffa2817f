"""
Token-granting gate for remote API calls.

Every remote call attempt made by the bulk fetch orchestrator and the event
aggregation engine first awaits ``acquire()`` on a rate limiter. Anything with
an ``async acquire()`` method satisfies ``RateLimiterProtocol``; the
``TokenBucketRateLimiter`` here is the default in-process implementation.

The bucket stores integer millitokens and refills lazily from elapsed
milliseconds, so no floating point error accumulates between calls.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from .exceptions import ValidationError

MILLI = 1000

# Published per-second API limits
CLOUDTRAIL_BURST = 2
CLOUDTRAIL_PER_SECOND = 2
QUICKSIGHT_BURST = 10
QUICKSIGHT_PER_SECOND = 10
QUICKSIGHT_PERMISSIONS_BURST = 2
QUICKSIGHT_PERMISSIONS_PER_SECOND = 2

JITTER_MS = 10


@runtime_checkable
class RateLimiterProtocol(Protocol):
    """Suspends until a token is available, then returns."""

    async def acquire(self) -> None: ...


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


class TokenBucketRateLimiter:
    """
    Async token bucket limiter.

    Args:
        burst: Maximum tokens held (and initial fill)
        per_second: Tokens added per second
        clock: Returns monotonic time in milliseconds
        sleep: Coroutine used to wait (seconds)
    """

    def __init__(
        self,
        burst: int,
        per_second: int,
        clock: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if burst < 1:
            raise ValidationError("burst", burst, "must be at least 1")
        if per_second < 1:
            raise ValidationError("per_second", per_second, "must be at least 1")
        self.burst = burst
        self.per_second = per_second
        self._clock = clock
        self._sleep = sleep
        self._tokens_milli = burst * MILLI
        self._last_refill_ms = clock()
        self._lock = asyncio.Lock()

    @classmethod
    def for_cloudtrail(cls) -> "TokenBucketRateLimiter":
        """Limiter for audit-log LookupEvents (2 requests/second)."""
        return cls(CLOUDTRAIL_BURST, CLOUDTRAIL_PER_SECOND)

    @classmethod
    def for_quicksight(cls) -> "TokenBucketRateLimiter":
        """Limiter for general BI-service API calls."""
        return cls(QUICKSIGHT_BURST, QUICKSIGHT_PER_SECOND)

    @classmethod
    def for_quicksight_permissions(cls) -> "TokenBucketRateLimiter":
        """Limiter for BI-service permission calls, which are throttled harder."""
        return cls(QUICKSIGHT_PERMISSIONS_BURST, QUICKSIGHT_PERMISSIONS_PER_SECOND)

    def _refill(self) -> None:
        now_ms = self._clock()
        elapsed_ms = now_ms - self._last_refill_ms
        if elapsed_ms <= 0:
            return

        # per_second tokens/s == per_second millitokens/ms, so whole
        # milliseconds always convert exactly and no time is left over
        tokens_to_add = elapsed_ms * self.per_second
        self._tokens_milli = min(self.burst * MILLI, self._tokens_milli + tokens_to_add)
        self._last_refill_ms = now_ms

    def token_count(self) -> float:
        """Current (refilled) token count, for diagnostics."""
        self._refill()
        return self._tokens_milli / MILLI

    async def acquire(self) -> None:
        """Wait until a token is available and consume it."""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens_milli >= MILLI:
                    self._tokens_milli -= MILLI
                    return

                needed_milli = MILLI - self._tokens_milli
                # ceil(needed_milli / per_second) milliseconds
                wait_ms = -(-needed_milli // self.per_second)
                jitter_ms = random.random() * JITTER_MS
                await self._sleep((wait_ms + jitter_ms) / 1000)
