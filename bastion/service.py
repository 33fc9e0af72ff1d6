"""Resilience service facade.

One ResilienceService is constructed per process and threaded through the
embedding application. It owns every piece of mutable state: rate limit
buckets, the cache and its counters, breaker states and error analytics.
"""

import asyncio
import contextlib
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from bastion.cache.keys import CacheKeyBuilder
from bastion.cache.optimizer import CacheOptimizer
from bastion.cache.service import TwoTierCache
from bastion.cache.ttl import LifecycleTTLResolver, TTLPolicy
from bastion.core.config import ResilienceConfig, Settings, load_resilience_config
from bastion.core.config import settings as default_settings
from bastion.observability.logging import LogEvents, configure_logging, get_logger
from bastion.ratelimit.limiter import ServiceRateLimiter
from bastion.ratelimit.models import RateLimitStatus
from bastion.recovery.analytics import ErrorAnalytics
from bastion.recovery.manager import ErrorRecoveryManager
from bastion.recovery.models import RecoveryContext
from bastion.recovery.retry import Sleep

T = TypeVar("T")

logger = get_logger(__name__)


class ResilienceService:
    """Rate limiting, caching and error recovery behind one object.

    Example:
        >>> service = create_service()
        >>> await service.start()
        >>> service.acquire("jira", "board-42")
        >>> sprint = await service.execute_with_recovery(
        ...     lambda: jira.get_sprint(42), RecoveryContext("jira", "getSprint")
        ... )
        >>> await service.close()
    """

    def __init__(
        self,
        config: ResilienceConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
        cache: TwoTierCache | None = None,
    ):
        """Initialize service.

        Args:
            config: Complete configuration record (defaults to built-ins)
            clock: Monotonic clock for buckets and breakers
            wall_clock: Epoch clock for cache entries and analytics
            sleep: Backoff sleep (injectable for tests)
            random_fn: Jitter source
            cache: Pre-built cache (defaults to one built from config)
        """
        self.config = config or ResilienceConfig()

        self.rate_limiters = ServiceRateLimiter(
            self.config.rate_limiters,
            clock=clock,
            sweep_interval_seconds=self.config.rate_limit_sweep_interval,
        )
        self.ttl_policy = TTLPolicy(
            self.config.cache.default_ttls_by_namespace,
            default_ttl=self.config.cache.default_ttl,
            max_multiplier=self.config.optimizer.max_ttl_multiplier,
        )
        self.cache = cache or TwoTierCache(
            self.config.cache, ttl_policy=self.ttl_policy, clock=wall_clock
        )
        self.ttl_resolver = LifecycleTTLResolver(self.cache, self.cache.ttl_policy)
        self.optimizer = CacheOptimizer(
            self.cache, self.config.optimizer, clock=wall_clock
        )
        self.recovery = ErrorRecoveryManager(
            self.config.recovery,
            clock=clock,
            sleep=sleep,
            random_fn=random_fn,
            analytics=ErrorAnalytics(
                self.config.recovery.analytics_buffer_size, clock=wall_clock
            ),
        )
        self.keys = CacheKeyBuilder
        self._started = False
        self._breaker_sweep_task: asyncio.Task[None] | None = None

    async def execute_with_recovery(
        self,
        operation: Callable[[], Awaitable[T] | T],
        context: RecoveryContext[T],
    ) -> T | dict[str, Any]:
        """Run an upstream call under breaker, retry and degradation policy."""
        return await self.recovery.execute_with_recovery(operation, context)

    def acquire(self, service_name: str, identifier: str = "default") -> RateLimitStatus:
        """Consume a rate-limit token.

        Raises:
            RateLimitError: Bucket empty (carries retry_after)
            ConfigurationError: Unknown service name
        """
        return self.rate_limiters.acquire(service_name, identifier)

    def get_error_analytics(self) -> dict[str, Any]:
        return self.recovery.get_error_analytics()

    def get_error_summary(self) -> dict[str, Any]:
        return self.recovery.analytics.get_summary()

    def get_circuit_breaker_stats(self) -> dict[str, dict[str, Any]]:
        return self.recovery.get_circuit_breaker_stats()

    def reset_circuit_breaker(self, key: str | None = None) -> None:
        self.recovery.reset_circuit_breaker(key)

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.get_stats().model_dump()

    def get_rate_limit_stats(self) -> dict[str, dict[str, Any]]:
        return self.rate_limiters.get_all_stats()

    async def health_check(self) -> dict[str, Any]:
        cache_health = await self.cache.health_check()
        open_breakers = [
            key
            for key, state in self.get_circuit_breaker_stats().items()
            if state["is_open"]
        ]
        return {
            "healthy": cache_health["healthy"] and not open_breakers,
            "cache": cache_health,
            "open_circuit_breakers": open_breakers,
        }

    async def start(self) -> None:
        """Start background work: bucket and breaker sweeps, the optimizer schedule."""
        if self._started:
            return
        self.rate_limiters.start()
        if self.config.optimizer.enabled:
            self.optimizer.start()
        if self.config.recovery.circuit_breaker.idle_eviction_seconds is not None:
            self._breaker_sweep_task = asyncio.create_task(self._sweep_breakers())
        self._started = True
        logger.info(
            LogEvents.SERVICE_STARTED,
            services=self.rate_limiters.services,
            l2_enabled=self.cache.redis is not None,
        )

    async def close(self) -> None:
        """Stop background work and release the Redis connection."""
        if self._breaker_sweep_task is not None:
            self._breaker_sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._breaker_sweep_task
            self._breaker_sweep_task = None
        await self.optimizer.close()
        await self.rate_limiters.close()
        await self.cache.close()
        self._started = False
        logger.info(LogEvents.SERVICE_CLOSED)

    async def _sweep_breakers(self) -> None:
        while True:
            await asyncio.sleep(self.config.rate_limit_sweep_interval)
            self.recovery.breakers.sweep_idle()

    async def __aenter__(self) -> "ResilienceService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def create_service(
    config: ResilienceConfig | None = None,
    settings: Settings | None = None,
    **kwargs: Any,
) -> ResilienceService:
    """Create a ResilienceService with logging configured.

    Args:
        config: Explicit configuration (default: bastion.yaml + environment)
        settings: Process settings (default: the module singleton)
        **kwargs: Passed to ResilienceService (clocks, sleep, cache)

    Returns:
        Configured (not yet started) ResilienceService
    """
    env = settings or default_settings
    configure_logging(level=env.log_level, is_production=env.is_production)
    if config is None:
        config = load_resilience_config(env=env)
    return ResilienceService(config, **kwargs)