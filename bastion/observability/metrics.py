"""OpenTelemetry metrics for the resilience layer.

Metrics:
    - bastion.cache.hits: Counter of cache hits by tier
    - bastion.cache.misses: Counter of cache misses
    - bastion.circuit_breaker.opened: Counter of breaker openings by key
    - bastion.retry.attempts: Counter of retries by tool and error kind
    - bastion.rate_limit.denied: Counter of rate-limit denials by service
    - bastion.recovery.degraded: Counter of degraded results by category

Instruments are created lazily and only when telemetry is enabled. Without
an SDK installed the API hands out no-op instruments.
"""

import logging

from opentelemetry import metrics

from bastion.core.config import settings

logger = logging.getLogger(__name__)

_meter: metrics.Meter | None = None

_cache_hits_counter: metrics.Counter | None = None
_cache_misses_counter: metrics.Counter | None = None
_breaker_opened_counter: metrics.Counter | None = None
_retry_counter: metrics.Counter | None = None
_rate_limit_denied_counter: metrics.Counter | None = None
_degraded_counter: metrics.Counter | None = None


def get_meter(name: str = "bastion") -> metrics.Meter:
    """Get OpenTelemetry meter instance (no-op if no SDK is configured)."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(name)
    return _meter


def metrics_enabled() -> bool:
    return settings.otel_enabled and settings.otel_metrics_enabled


def _ensure_instruments() -> None:
    """Lazy initialization of metric instruments."""
    global _cache_hits_counter
    global _cache_misses_counter
    global _breaker_opened_counter
    global _retry_counter
    global _rate_limit_denied_counter
    global _degraded_counter

    if not metrics_enabled():
        return

    meter = get_meter()

    if _cache_hits_counter is None:
        _cache_hits_counter = meter.create_counter(
            name="bastion.cache.hits", description="Number of cache hits", unit="1"
        )
    if _cache_misses_counter is None:
        _cache_misses_counter = meter.create_counter(
            name="bastion.cache.misses", description="Number of cache misses", unit="1"
        )
    if _breaker_opened_counter is None:
        _breaker_opened_counter = meter.create_counter(
            name="bastion.circuit_breaker.opened",
            description="Number of circuit breaker openings",
            unit="1",
        )
    if _retry_counter is None:
        _retry_counter = meter.create_counter(
            name="bastion.retry.attempts",
            description="Number of retried attempts",
            unit="1",
        )
    if _rate_limit_denied_counter is None:
        _rate_limit_denied_counter = meter.create_counter(
            name="bastion.rate_limit.denied",
            description="Number of requests denied by a rate limiter",
            unit="1",
        )
    if _degraded_counter is None:
        _degraded_counter = meter.create_counter(
            name="bastion.recovery.degraded",
            description="Number of degraded results returned",
            unit="1",
        )


def record_cache_hit(tier: str) -> None:
    """Record cache hit metric (tier is "l1" or "l2")."""
    if not metrics_enabled():
        return

    _ensure_instruments()

    if _cache_hits_counter:
        _cache_hits_counter.add(1, {"tier": tier})


def record_cache_miss() -> None:
    """Record cache miss metric."""
    if not metrics_enabled():
        return

    _ensure_instruments()

    if _cache_misses_counter:
        _cache_misses_counter.add(1)


def record_breaker_opened(key: str) -> None:
    """Record a circuit breaker opening for a "tool:operation" key."""
    if not metrics_enabled():
        return

    _ensure_instruments()

    if _breaker_opened_counter:
        _breaker_opened_counter.add(1, {"breaker": key})


def record_retry(tool_name: str, kind: str) -> None:
    """Record a retried attempt."""
    if not metrics_enabled():
        return

    _ensure_instruments()

    if _retry_counter:
        _retry_counter.add(1, {"tool": tool_name, "kind": kind})


def record_rate_limit_denied(service: str) -> None:
    if not metrics_enabled():
        return

    _ensure_instruments()

    if _rate_limit_denied_counter:
        _rate_limit_denied_counter.add(1, {"service": service})


def record_degraded_result(category: str) -> None:
    if not metrics_enabled():
        return

    _ensure_instruments()

    if _degraded_counter:
        _degraded_counter.add(1, {"category": category})
