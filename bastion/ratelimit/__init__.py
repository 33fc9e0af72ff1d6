"""Per-service token bucket rate limiting."""

from bastion.ratelimit.limiter import RateLimiter, ServiceRateLimiter, create_rate_limiter
from bastion.ratelimit.models import RateLimiterConfig, RateLimitStatus, TokenBucket

__all__ = [
    "RateLimiter",
    "ServiceRateLimiter",
    "create_rate_limiter",
    "RateLimiterConfig",
    "RateLimitStatus",
    "TokenBucket",
]
