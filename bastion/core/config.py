"""Configuration management for Bastion.

Process settings (Redis, logging, telemetry, retry and breaker defaults) come
from environment variables and ``.env`` via pydantic-settings. Per-service
rate limits and per-namespace TTLs come from ``bastion.yaml`` when present,
with built-in defaults otherwise.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bastion.core.exceptions import ErrorKind, default_retryable_kinds

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "bastion.yaml"


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Redis (L2 cache)
    redis_url: str = Field(default="redis://localhost:6379", description="Redis URL")
    redis_cache_enabled: bool = Field(
        default=False, description="Enable the shared Redis tier"
    )
    redis_timeout: int = Field(
        default=5, description="Redis operation timeout seconds", ge=1, le=30
    )
    redis_circuit_breaker_threshold: int = Field(
        default=5, description="Failures before bypassing Redis", ge=1, le=20
    )
    redis_circuit_breaker_timeout: int = Field(
        default=300,
        description="Seconds before Redis is probed again (5 min)",
        ge=1,
        le=3600,
    )

    # L1 cache
    l1_max_entries: int = Field(
        default=1000, description="Max entries in the in-process tier", ge=1
    )
    cache_default_ttl: int = Field(
        default=600, description="Fallback TTL in seconds (10 min)", ge=1
    )

    # Retry defaults
    retry_max_attempts: int = Field(
        default=3, description="Attempts per operation", ge=1, le=20
    )
    retry_base_delay: float = Field(
        default=1.0, description="First backoff delay in seconds", ge=0.0
    )
    retry_max_delay: float = Field(
        default=30.0, description="Backoff ceiling in seconds", ge=0.0
    )
    retry_backoff_multiplier: float = Field(
        default=2.0, description="Exponential backoff multiplier", ge=1.0
    )

    # Circuit breaker defaults
    circuit_breaker_failure_threshold: int = Field(
        default=5, description="Failures before opening a breaker", ge=1
    )
    circuit_breaker_timeout: float = Field(
        default=60.0, description="Seconds an open breaker stays open", gt=0
    )
    circuit_breaker_monitoring_period: float = Field(
        default=300.0, description="Failure counting window in seconds", gt=0
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(
        default="development", description="Environment (development, production)"
    )

    # OpenTelemetry
    otel_enabled: bool = Field(
        default=False, description="Enable OpenTelemetry instrumentation"
    )
    otel_service_name: str = Field(
        default="bastion", description="Service name for telemetry"
    )
    otel_metrics_enabled: bool = Field(
        default=True, description="Enable metrics collection"
    )

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "Settings":
        """Validate the backoff ceiling is not below the first delay."""
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError(
                f"retry_max_delay ({self.retry_max_delay}) must be >= "
                f"retry_base_delay ({self.retry_base_delay})"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


class RecoveryMode(str, Enum):
    """How a success affects a breaker's failure count."""

    DECAY = "decay"
    RESET = "reset"


class RetryConfig(BaseModel):
    """Retry and backoff settings.

    Attributes:
        max_attempts: Total attempts including the first
        base_delay: Delay before the second attempt (seconds)
        max_delay: Ceiling for any single delay (seconds)
        backoff_multiplier: Growth factor per attempt
        retryable_kinds: Error kinds worth another attempt
    """

    max_attempts: int = Field(default=3, ge=1, description="Attempts per operation")
    base_delay: float = Field(default=1.0, ge=0.0, description="Base delay (seconds)")
    max_delay: float = Field(default=30.0, ge=0.0, description="Max delay (seconds)")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Multiplier")
    retryable_kinds: set[ErrorKind] = Field(
        default_factory=default_retryable_kinds,
        description="Error kinds that may be retried",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class CircuitBreakerConfig(BaseModel):
    """Per-operation circuit breaker settings.

    Attributes:
        failure_threshold: Failures within the window that open the breaker
        timeout: Seconds an open breaker rejects calls
        monitoring_period: Window after which failure counts reset
        recovery_mode: DECAY subtracts one failure per success, RESET zeroes
        idle_eviction_seconds: Closed states idle this long are dropped
            (None disables eviction)
    """

    failure_threshold: int = Field(default=5, ge=1, description="Failures to open")
    timeout: float = Field(default=60.0, gt=0, description="Open duration (seconds)")
    monitoring_period: float = Field(
        default=300.0, gt=0, description="Failure window (seconds)"
    )
    recovery_mode: RecoveryMode = Field(
        default=RecoveryMode.DECAY, description="Success handling"
    )
    idle_eviction_seconds: float | None = Field(
        default=None, gt=0, description="Idle window before a closed state is dropped"
    )


class RecoveryConfig(BaseModel):
    """Settings for the error recovery orchestrator."""

    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    fallback_enabled: bool = Field(default=True, description="Use fallbacks")
    graceful_degradation: bool = Field(
        default=True, description="Return degraded payloads when tolerated"
    )
    analytics_buffer_size: int = Field(
        default=100, ge=1, description="Recent error records kept"
    )


class RateLimiterConfig(BaseModel):
    """Token bucket configuration for one service.

    Attributes:
        tokens_per_interval: Tokens refilled per interval
        interval_ms: Refill interval in milliseconds
        burst_limit: Bucket capacity (defaults to tokens_per_interval)
        idle_timeout_seconds: Buckets unused this long are swept
    """

    tokens_per_interval: int = Field(..., ge=1, description="Tokens per interval")
    interval_ms: int = Field(..., ge=1, description="Refill interval (milliseconds)")
    burst_limit: int | None = Field(
        default=None, ge=1, description="Bucket capacity (burst size)"
    )
    idle_timeout_seconds: float = Field(
        default=600.0, gt=0, description="Idle window before a bucket is swept"
    )

    @property
    def capacity(self) -> int:
        """Maximum tokens a bucket may hold."""
        return self.burst_limit or self.tokens_per_interval

    @property
    def refill_rate(self) -> float:
        """Tokens added per millisecond."""
        return self.tokens_per_interval / self.interval_ms


def default_service_limits() -> dict[str, RateLimiterConfig]:
    """Built-in per-service limits used when bastion.yaml has none."""
    return {
        # GitHub REST core API: 5000 requests per hour
        "github-core": RateLimiterConfig(
            tokens_per_interval=5000, interval_ms=60 * 60 * 1000, burst_limit=100
        ),
        # Search is far narrower than core
        "github-search": RateLimiterConfig(
            tokens_per_interval=30, interval_ms=60 * 1000, burst_limit=10
        ),
        "jira": RateLimiterConfig(
            tokens_per_interval=600, interval_ms=60 * 1000, burst_limit=50
        ),
        "general": RateLimiterConfig(
            tokens_per_interval=100, interval_ms=60 * 1000, burst_limit=20
        ),
    }


def default_namespace_ttls() -> dict[str, int]:
    """Built-in per-namespace TTLs (seconds) for entities of unknown lifecycle."""
    return {
        "jira:boards": 3600,
        "jira:sprints": 900,
        "jira:sprint": 600,
        "jira:issues": 300,
        "jira:velocity": 1800,
        "jira:burndown": 600,
        "jira:team-performance": 1800,
        "jira:enhanced-issues": 300,
        "github:commits": 900,
        "github:prs": 600,
        "github:enhanced-prs": 600,
        "analytics:commit-trends": 1800,
        "analytics:github-metrics": 1800,
        "analytics:team-performance": 1800,
        "analytics:issue-types": 1800,
        "api:velocity": 900,
        "api:sprints": 600,
        "api:sprint:issues": 300,
        "health:check": 30,
        "circuit:breaker": 60,
    }


class CacheConfig(BaseModel):
    """Configuration for the two-tier cache.

    Attributes:
        enabled: Whether the shared Redis tier is used
        redis_url: Redis connection URL
        timeout: Redis operation timeout in seconds
        l1_max_entries: Max entries held in process
        l1_backfill_ttl: Max TTL for entries copied from Redis into L1
        default_ttl: TTL when neither caller nor namespace supplies one
        default_ttls_by_namespace: Namespace to TTL (seconds)
        max_tracked_keys: Bound on per-key access counters
        circuit_breaker_threshold: Redis failures before bypassing it
        circuit_breaker_timeout: Seconds before Redis is probed again
    """

    enabled: bool = Field(default=False, description="Enable the Redis tier")
    redis_url: str = Field(
        default="redis://localhost:6379", description="Redis connection URL"
    )
    timeout: int = Field(default=5, ge=1, description="Redis operation timeout (s)")
    l1_max_entries: int = Field(default=1000, ge=1, description="L1 capacity")
    l1_backfill_ttl: int = Field(
        default=300, ge=1, description="Ceiling for L1 backfill TTL (seconds)"
    )
    default_ttl: int = Field(default=600, ge=1, description="Fallback TTL (seconds)")
    default_ttls_by_namespace: dict[str, int] = Field(
        default_factory=default_namespace_ttls,
        description="Namespace TTLs (seconds)",
    )
    max_tracked_keys: int = Field(
        default=10_000, ge=1, description="Bound on per-key access counters"
    )
    circuit_breaker_threshold: int = Field(
        default=5, ge=1, description="Failures before opening circuit"
    )
    circuit_breaker_timeout: int = Field(
        default=300, ge=1, description="Circuit breaker timeout (seconds)"
    )


class OptimizerConfig(BaseModel):
    """Cache optimizer thresholds."""

    enabled: bool = Field(default=True, description="Run the optimizer on a schedule")
    interval_seconds: float = Field(
        default=900.0, gt=0, description="Seconds between scheduled runs"
    )
    target_hit_rate: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Hit rate below which TTLs grow"
    )
    min_requests: int = Field(
        default=20, ge=1, description="Requests before a namespace is judged"
    )
    ttl_multiplier: float = Field(
        default=1.5, gt=1.0, description="TTL growth factor per adjustment"
    )
    max_ttl_multiplier: float = Field(
        default=4.0, ge=1.0, description="Ceiling on the cumulative multiplier"
    )
    hot_key_threshold: int = Field(
        default=10, ge=1, description="Accesses that make a key hot"
    )
    stale_after_seconds: float = Field(
        default=3600.0, gt=0, description="Idle time before a namespace is stale"
    )
    history_size: int = Field(default=50, ge=1, description="Results kept")


class ResilienceConfig(BaseModel):
    """Complete configuration record for a ResilienceService."""

    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    rate_limiters: dict[str, RateLimiterConfig] = Field(
        default_factory=default_service_limits
    )
    rate_limit_sweep_interval: float = Field(
        default=300.0, gt=0, description="Seconds between idle bucket sweeps"
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)


def find_config_file(filename: str = CONFIG_FILENAME) -> Path | None:
    """Locate bastion.yaml, preferring the project root over the CWD."""
    search_paths = [
        Path(__file__).parent.parent.parent / filename,  # Project root (priority)
        Path.cwd() / filename,
    ]
    for config_path in search_paths:
        if config_path.exists():
            return config_path
    return None


def load_yaml_config(path: Path | str | None = None) -> dict[str, Any]:
    """Read bastion.yaml into a dict.

    Missing or malformed files yield an empty dict so callers fall back to
    built-in defaults.
    """
    config_path = Path(path) if path is not None else find_config_file()
    if config_path is None or not config_path.exists():
        return {}

    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to read {config_path}: {e}")
        return {}

    if not isinstance(config, dict):
        logger.warning(f"Ignoring {config_path}: top level is not a mapping")
        return {}
    return config


def load_resilience_config(
    path: Path | str | None = None,
    env: Settings | None = None,
) -> ResilienceConfig:
    """Build a ResilienceConfig from settings and bastion.yaml.

    Precedence (highest first):
        1. bastion.yaml sections
        2. Environment settings (Redis, retry and breaker defaults)
        3. Built-in defaults

    Args:
        path: Explicit YAML path (defaults to the search path)
        env: Process settings (defaults to the module singleton)

    Returns:
        Validated ResilienceConfig

    Raises:
        pydantic.ValidationError: If a YAML section has invalid values
    """
    env = env or settings
    raw = load_yaml_config(path)

    retry: dict[str, Any] = {
        "max_attempts": env.retry_max_attempts,
        "base_delay": env.retry_base_delay,
        "max_delay": env.retry_max_delay,
        "backoff_multiplier": env.retry_backoff_multiplier,
    }
    breaker: dict[str, Any] = {
        "failure_threshold": env.circuit_breaker_failure_threshold,
        "timeout": env.circuit_breaker_timeout,
        "monitoring_period": env.circuit_breaker_monitoring_period,
    }
    cache: dict[str, Any] = {
        "enabled": env.redis_cache_enabled,
        "redis_url": env.redis_url,
        "timeout": env.redis_timeout,
        "l1_max_entries": env.l1_max_entries,
        "default_ttl": env.cache_default_ttl,
        "circuit_breaker_threshold": env.redis_circuit_breaker_threshold,
        "circuit_breaker_timeout": env.redis_circuit_breaker_timeout,
    }

    recovery_section = _section(raw, "recovery")
    retry.update(_section(raw, "retry"))
    breaker.update(_section(raw, "circuit_breaker"))
    cache_section = _section(raw, "cache")
    namespace_ttls = _section(cache_section, "default_ttls_by_namespace")
    if namespace_ttls:
        cache_section = {
            **cache_section,
            "default_ttls_by_namespace": {**default_namespace_ttls(), **namespace_ttls},
        }
    cache.update(cache_section)

    data: dict[str, Any] = {
        "recovery": {**recovery_section, "retry": retry, "circuit_breaker": breaker},
        "cache": cache,
        "optimizer": _section(raw, "optimizer"),
    }
    rate_limiters = _section(raw, "rate_limiters")
    if rate_limiters:
        data["rate_limiters"] = {
            **{name: cfg.model_dump() for name, cfg in default_service_limits().items()},
            **rate_limiters,
        }
    if "rate_limit_sweep_interval" in raw:
        data["rate_limit_sweep_interval"] = raw["rate_limit_sweep_interval"]

    return ResilienceConfig.model_validate(data)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


# Global settings instance
settings = Settings()
