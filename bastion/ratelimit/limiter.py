"""Token bucket rate limiting per upstream service.

Algorithm:
    - One bucket per identifier, created full on first use
    - Refill: tokens = min(capacity, tokens + elapsed_ms * refill_rate)
    - A request consumes one whole token; with less than one token it is
      denied and told how long until the next token arrives
    - Buckets idle longer than idle_timeout_seconds are swept

Denials are never queued: callers get a RateLimitError (via acquire) or a
RateLimitStatus with allowed=False (via check_limit).
"""

import asyncio
import contextlib
import logging
import math
import time
from collections.abc import Callable
from typing import Any

from bastion.core.exceptions import ConfigurationError, RateLimitError
from bastion.observability.metrics import record_rate_limit_denied
from bastion.ratelimit.models import (
    RateLimiterConfig,
    RateLimitStatus,
    TokenBucket,
    default_service_limits,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RateLimiter:
    """In-process token bucket limiter for a single service.

    Example:
        >>> limiter = RateLimiter(RateLimiterConfig(tokens_per_interval=5, interval_ms=60000))
        >>> limiter.check_limit("user-1").allowed
        True
    """

    def __init__(self, config: RateLimiterConfig, clock: Clock = time.monotonic):
        """Initialize rate limiter.

        Args:
            config: Bucket configuration
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.config = config
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}

    @property
    def interval_seconds(self) -> float:
        return self.config.interval_ms / 1000

    def check_limit(self, identifier: str = "default") -> RateLimitStatus:
        """Consume a token for identifier if one is available.

        Returns:
            RateLimitStatus; retry_after is set only when denied
        """
        now = self._clock()
        bucket = self._buckets.get(identifier)
        if bucket is None:
            bucket = TokenBucket(
                tokens=float(self.config.capacity),
                capacity=float(self.config.capacity),
                refill_rate=self.config.refill_rate,
                last_refill=now,
            )
            self._buckets[identifier] = bucket
        else:
            bucket.refill(now)

        reset_time = now + self.interval_seconds

        if bucket.tokens >= 1:
            bucket.tokens -= 1
            return RateLimitStatus(
                allowed=True, remaining=int(bucket.tokens), reset_time=reset_time
            )

        return RateLimitStatus(
            allowed=False,
            remaining=0,
            reset_time=reset_time,
            retry_after=self._retry_after(bucket.tokens),
        )

    def get_status(self, identifier: str = "default") -> RateLimitStatus:
        """Report what check_limit would decide, without consuming or creating."""
        now = self._clock()
        reset_time = now + self.interval_seconds
        bucket = self._buckets.get(identifier)
        if bucket is None:
            return RateLimitStatus(
                allowed=True, remaining=self.config.capacity, reset_time=reset_time
            )

        elapsed_ms = max(0.0, (now - bucket.last_refill) * 1000)
        tokens = min(bucket.capacity, bucket.tokens + elapsed_ms * bucket.refill_rate)
        if tokens >= 1:
            return RateLimitStatus(
                allowed=True, remaining=int(tokens), reset_time=reset_time
            )
        return RateLimitStatus(
            allowed=False,
            remaining=0,
            reset_time=reset_time,
            retry_after=self._retry_after(tokens),
        )

    def acquire(self, identifier: str = "default") -> RateLimitStatus:
        """Consume a token or raise.

        Raises:
            RateLimitError: With retry_after seconds when the bucket is empty
        """
        status = self.check_limit(identifier)
        if not status.allowed:
            retry_after = status.retry_after or 1
            raise RateLimitError(
                f"Rate limit exceeded for {identifier}, retry after {retry_after}s",
                retry_after=retry_after,
                context={"identifier": identifier},
            )
        return status

    def reset(self, identifier: str = "default") -> None:
        """Drop the bucket for identifier (next use starts full)."""
        self._buckets.pop(identifier, None)

    def clear(self) -> None:
        self._buckets.clear()

    def sweep_idle(self, now: float | None = None) -> int:
        """Remove buckets untouched for longer than idle_timeout_seconds.

        Returns:
            Number of buckets removed
        """
        now = self._clock() if now is None else now
        idle = [
            identifier
            for identifier, bucket in self._buckets.items()
            if now - bucket.last_refill > self.config.idle_timeout_seconds
        ]
        for identifier in idle:
            del self._buckets[identifier]
        return len(idle)

    def get_stats(self) -> dict[str, Any]:
        """Active bucket count and average available tokens."""
        active = len(self._buckets)
        average = (
            sum(bucket.tokens for bucket in self._buckets.values()) / active
            if active
            else 0.0
        )
        return {
            "active_buckets": active,
            "average_tokens": average,
            "capacity": self.config.capacity,
            "tokens_per_interval": self.config.tokens_per_interval,
            "interval_ms": self.config.interval_ms,
        }

    def _retry_after(self, tokens: float) -> int:
        # Seconds until one whole token has been refilled
        return math.ceil(
            ((1 - tokens) / self.config.tokens_per_interval)
            * self.config.interval_ms
            / 1000
        )


class ServiceRateLimiter:
    """Registry of independently configured limiters, one per service.

    Unknown service names are a configuration error, never a silent pass.
    """

    def __init__(
        self,
        configs: dict[str, RateLimiterConfig] | None = None,
        clock: Clock = time.monotonic,
        sweep_interval_seconds: float = 300.0,
    ):
        """Initialize registry.

        Args:
            configs: Service name to config (defaults to the built-in services)
            clock: Monotonic clock shared by every limiter
            sweep_interval_seconds: Period of the background idle sweep
        """
        self._clock = clock
        self.sweep_interval_seconds = sweep_interval_seconds
        self._limiters: dict[str, RateLimiter] = {}
        self._sweep_task: asyncio.Task[None] | None = None

        if configs is None:
            configs = default_service_limits()
        for name, config in configs.items():
            self.add_service(name, config)

    @property
    def services(self) -> list[str]:
        return list(self._limiters)

    def add_service(self, name: str, config: RateLimiterConfig) -> RateLimiter:
        """Register (or replace) the limiter for a service."""
        limiter = RateLimiter(config, clock=self._clock)
        self._limiters[name] = limiter
        return limiter

    def get_limiter(self, service: str) -> RateLimiter:
        """Look up a service's limiter.

        Raises:
            ConfigurationError: If the service is not configured
        """
        limiter = self._limiters.get(service)
        if limiter is None:
            raise ConfigurationError(
                f"Unknown rate limiter service: {service}",
                context={"service": service, "known_services": self.services},
            )
        return limiter

    def check_limit(self, service: str, identifier: str = "default") -> RateLimitStatus:
        status = self.get_limiter(service).check_limit(identifier)
        if not status.allowed:
            logger.debug(
                f"Rate limit denied for {service}/{identifier}, "
                f"retry after {status.retry_after}s"
            )
            record_rate_limit_denied(service)
        return status

    def acquire(self, service: str, identifier: str = "default") -> RateLimitStatus:
        """Consume a token for (service, identifier) or raise RateLimitError."""
        limiter = self.get_limiter(service)
        try:
            return limiter.acquire(identifier)
        except RateLimitError as e:
            e.context["service"] = service
            logger.warning(
                f"Rate limit exceeded for {service}/{identifier}, "
                f"retry after {e.retry_after}s"
            )
            record_rate_limit_denied(service)
            raise

    def get_status(self, service: str, identifier: str = "default") -> RateLimitStatus:
        return self.get_limiter(service).get_status(identifier)

    def reset(self, service: str, identifier: str = "default") -> None:
        self.get_limiter(service).reset(identifier)

    def clear(self) -> None:
        """Drop every bucket of every service."""
        for limiter in self._limiters.values():
            limiter.clear()

    def sweep_idle(self, now: float | None = None) -> int:
        """Sweep idle buckets across all services. Returns buckets removed."""
        return sum(limiter.sweep_idle(now) for limiter in self._limiters.values())

    def get_all_stats(self) -> dict[str, dict[str, Any]]:
        return {name: limiter.get_stats() for name, limiter in self._limiters.items()}

    def start(self) -> None:
        """Launch the periodic idle sweep. Requires a running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.sweep_idle()
            if removed:
                logger.info(f"Swept {removed} idle rate limit buckets")


def create_rate_limiter(
    requests_per_minute: int,
    burst_limit: int | None = None,
    clock: Clock = time.monotonic,
) -> RateLimiter:
    """Build a per-minute limiter.

    Args:
        requests_per_minute: Sustained rate
        burst_limit: Bucket capacity (defaults to a quarter of the rate)

    Example:
        >>> limiter = create_rate_limiter(60)
        >>> limiter.config.capacity
        15
    """
    config = RateLimiterConfig(
        tokens_per_interval=requests_per_minute,
        interval_ms=60 * 1000,
        burst_limit=burst_limit or max(1, requests_per_minute // 4),
    )
    return RateLimiter(config, clock=clock)
