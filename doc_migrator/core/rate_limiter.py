"""
Rate limiting for API admission.

Implements a dual token bucket: one bucket counts requests, the other
counts tokens. Both refill continuously at their per-minute capacity.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

MS_PER_MINUTE = 60000


@dataclass(frozen=True)
class Tier:
    """Named rate-limit configuration for an API account."""
    name: str
    requests_per_minute: int
    tokens_per_minute: int

    def __post_init__(self):
        """Validate limits are positive."""
        if self.requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be > 0")
        if self.tokens_per_minute <= 0:
            raise ValueError("tokens_per_minute must be > 0")


# Published limits per account tier
TIERS: Dict[str, Tier] = {
    "free": Tier("free", requests_per_minute=5, tokens_per_minute=20000),
    "build1": Tier("build1", requests_per_minute=50, tokens_per_minute=40000),
    "build2": Tier("build2", requests_per_minute=50, tokens_per_minute=80000),
    "build3": Tier("build3", requests_per_minute=50, tokens_per_minute=160000),
    "build4": Tier("build4", requests_per_minute=50, tokens_per_minute=400000),
}

DEFAULT_TIER = "build1"


def get_tier(name: str) -> Tier:
    """Look up a tier by name.

    Raises:
        ValueError: If the tier is not known
    """
    if name not in TIERS:
        raise ValueError(f"Unsupported tier: {name}")
    return TIERS[name]


@dataclass
class RateBucket:
    """A single token bucket.

    ``level`` stays within ``[0, capacity]`` at every observation point.
    Times are in milliseconds.
    """
    capacity: float
    level: float
    last_refill_at: float

    def refill(self, now_ms: float) -> None:
        """Add capacity proportional to elapsed time, saturating at capacity."""
        elapsed_ms = max(0.0, now_ms - self.last_refill_at)
        self.level = min(self.capacity, self.level + self.capacity * elapsed_ms / MS_PER_MINUTE)
        self.last_refill_at = now_ms

    def wait_ms(self, needed: float) -> int:
        """Minimum wait in milliseconds until ``needed`` units are available."""
        shortfall = needed - self.level
        if shortfall <= 0:
            return 0
        return math.ceil(shortfall * MS_PER_MINUTE / self.capacity)


class RateLimiter:
    """Token bucket rate limiter shared by all requests of a run.

    The clock and sleep functions are injectable so timing can be driven
    by a simulated clock. ``clock`` returns seconds, ``sleep`` takes seconds.
    """

    def __init__(
        self,
        tier: Tier,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.tier = tier
        self._clock = clock
        self._sleep = sleep
        now = self._now_ms()
        self._token_bucket = RateBucket(tier.tokens_per_minute, tier.tokens_per_minute, now)
        self._request_bucket = RateBucket(tier.requests_per_minute, tier.requests_per_minute, now)

    @property
    def tokens_per_minute(self) -> int:
        return self.tier.tokens_per_minute

    @property
    def requests_per_minute(self) -> int:
        return self.tier.requests_per_minute

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _refill(self) -> None:
        now = self._now_ms()
        self._token_bucket.refill(now)
        self._request_bucket.refill(now)

    async def acquire(self, tokens_needed: int) -> None:
        """Wait until both buckets have capacity, then debit them.

        Debits ``tokens_needed`` from the token bucket and one from the
        request bucket. Demands larger than the token capacity are clamped
        to the full bucket, since they could never be satisfied otherwise.

        After each computed wait the buckets are re-checked, and the caller
        waits again if a concurrent acquirer took the refilled capacity.
        """
        if tokens_needed < 0:
            raise ValueError("tokens_needed cannot be negative")

        tokens = tokens_needed
        if tokens > self.tokens_per_minute:
            logger.warning(
                "Request of %d tokens exceeds tier capacity %d; clamping to capacity",
                tokens_needed, self.tokens_per_minute,
            )
            tokens = self.tokens_per_minute

        while True:
            self._refill()
            wait_ms = max(
                self._token_bucket.wait_ms(tokens),
                self._request_bucket.wait_ms(1),
            )
            if wait_ms == 0:
                # Check and debit happen in the same scheduling tick
                self._token_bucket.level -= tokens
                self._request_bucket.level -= 1
                return

            logger.debug(
                "Rate limit reached, waiting %d ms (tokens=%.0f, requests=%.2f)",
                wait_ms, self._token_bucket.level, self._request_bucket.level,
            )
            await self._sleep(wait_ms / 1000.0)

    def get_available_tokens(self) -> float:
        """Current token bucket level."""
        self._refill()
        return self._token_bucket.level

    def get_available_requests(self) -> float:
        """Current request bucket level."""
        self._refill()
        return self._request_bucket.level

    def reset(self) -> None:
        """Restore both buckets to full capacity."""
        now = self._now_ms()
        for bucket in (self._token_bucket, self._request_bucket):
            bucket.level = bucket.capacity
            bucket.last_refill_at = now
