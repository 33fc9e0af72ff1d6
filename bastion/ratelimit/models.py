"""Rate limiter configuration and state models."""

from dataclasses import dataclass

from bastion.core.config import RateLimiterConfig, default_service_limits

__all__ = ["RateLimiterConfig", "RateLimitStatus", "TokenBucket", "default_service_limits"]


@dataclass
class TokenBucket:
    """Per-identifier bucket. Created lazily on first use.

    Attributes:
        tokens: Available tokens, always within [0, capacity]
        capacity: Maximum tokens
        refill_rate: Tokens per millisecond
        last_refill: Clock reading (seconds) of the last refill
    """

    tokens: float
    capacity: float
    refill_rate: float
    last_refill: float

    def refill(self, now: float) -> None:
        """Add tokens for the time elapsed since the last refill."""
        elapsed_ms = max(0.0, (now - self.last_refill) * 1000)
        self.tokens = min(self.capacity, self.tokens + elapsed_ms * self.refill_rate)
        self.last_refill = now


@dataclass(frozen=True)
class RateLimitStatus:
    """Outcome of a limit check.

    Attributes:
        allowed: Whether the request may proceed
        remaining: Whole tokens left after this check
        reset_time: Clock reading (seconds) when a full interval will have elapsed
        retry_after: Seconds to wait before retrying (only when denied)
    """

    allowed: bool
    remaining: int
    reset_time: float
    retry_after: int | None = None

