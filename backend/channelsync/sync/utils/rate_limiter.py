"""Token bucket rate limiter shared by every call to the remote API."""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class ThrottleTier(str, Enum):
    """Refill-rate tiers selected from live rate-limit feedback."""

    NORMAL = "normal"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"
    THROTTLED = "throttled"


# Fraction of the default refill rate used in each tier
TIER_RATE_FACTORS = {
    ThrottleTier.NORMAL: 1.0,
    ThrottleTier.MODERATE: 0.5,
    ThrottleTier.AGGRESSIVE: 0.25,
    ThrottleTier.THROTTLED: 0.1,
}

# Tiers that also empty the bucket when entered
DRAINING_TIERS = frozenset([ThrottleTier.AGGRESSIVE, ThrottleTier.THROTTLED])


class TokenBucket:
    """Token bucket with lazy refill and externally adjustable refill rate.

    The bucket starts full. Tokens are replenished from elapsed time at each
    consume attempt, never by a background task. When not enough tokens are
    available, the caller sleeps for the computed deficit and the wait is
    treated as having spent the bucket entirely.

    All state changes are plain arithmetic with no await in between, so
    concurrent coroutines on one event loop never observe a half-applied
    update. Do not add suspension points inside the update methods.
    """

    def __init__(
        self,
        rate: float,
        capacity: float,
        pacing_delay: float = 0.0,
        safety_margin: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize token bucket.

        Args:
            rate: Default tokens per second
            capacity: Maximum tokens in bucket (burst capacity)
            pacing_delay: Fixed delay after an immediate debit, to avoid bursts
            safety_margin: Seconds added to every computed wait
            clock: Monotonic clock, injectable for tests
            sleep: Async sleep, injectable for tests
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity <= 0:
            raise ValueError("capacity must be positive")

        self.default_rate = rate
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self.pacing_delay = pacing_delay
        self.safety_margin = safety_margin
        self.tier = ThrottleTier.NORMAL
        self._clock = clock
        self._sleep = sleep
        self.last_refill = clock()
        self.total_consumed = 0.0

    def _refill(self) -> None:
        """Refill tokens based on elapsed time since last refill."""
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now

    async def try_consume(self, cost: float = 1.0) -> float:
        """Debit ``cost`` tokens, waiting first if the bucket is short.

        Args:
            cost: Number of tokens to debit

        Returns:
            Seconds spent waiting (0.0 when tokens were available)
        """
        self._refill()
        self.total_consumed += cost

        if self.tokens >= cost:
            self.tokens -= cost
            if self.pacing_delay > 0:
                await self._sleep(self.pacing_delay)
            return 0.0

        wait_time = (cost - self.tokens) / self.rate + self.safety_margin
        logger.debug(
            "rate_limit_wait",
            wait_seconds=round(wait_time, 3),
            tokens=round(self.tokens, 3),
            rate=self.rate,
        )
        await self._sleep(wait_time)

        # The wait paid for this call; whatever would have accrued is spent
        self.tokens = 0.0
        self.last_refill = self._clock()
        return wait_time

    def drain(self) -> None:
        """Force the bucket empty and restart the refill clock."""
        self.tokens = 0.0
        self.last_refill = self._clock()

    def set_refill_rate(self, rate: float) -> None:
        """Change the refill rate. Tokens accrued so far are kept."""
        if rate <= 0:
            raise ValueError("rate must be positive")
        self._refill()
        self.rate = rate

    def apply_tier(self, tier: ThrottleTier) -> None:
        """Switch to a throttle tier, draining the bucket for the severe ones."""
        if tier != self.tier:
            logger.info("rate_limit_tier_changed", previous=self.tier.value, tier=tier.value)
        self.set_refill_rate(self.default_rate * TIER_RATE_FACTORS[tier])
        if tier in DRAINING_TIERS:
            self.drain()
        self.tier = tier

    def apply_headroom(self, headroom: Optional[float]) -> ThrottleTier:
        """Pick a tier from the remaining fraction of the remote budget.

        Args:
            headroom: Remaining budget as a fraction in [0, 1], or None
                when the response carried no rate-limit signal (treated as
                plenty of headroom)

        Returns:
            The tier now in effect
        """
        if headroom is None:
            tier = ThrottleTier.NORMAL
        elif headroom < 0.05:
            tier = ThrottleTier.AGGRESSIVE
        elif headroom < 0.20:
            tier = ThrottleTier.MODERATE
        else:
            tier = ThrottleTier.NORMAL
        self.apply_tier(tier)
        return tier

    def snapshot(self) -> dict:
        """Current bucket state for health output."""
        return {
            "tokens": round(self.tokens, 3),
            "capacity": self.capacity,
            "rate": self.rate,
            "tier": self.tier.value,
        }
