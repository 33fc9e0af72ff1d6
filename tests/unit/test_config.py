"""Unit tests for settings and bastion.yaml loading."""

import pytest
from pydantic import ValidationError

from bastion.core.config import (
    CircuitBreakerConfig,
    RateLimiterConfig,
    RecoveryMode,
    ResilienceConfig,
    RetryConfig,
    Settings,
    default_namespace_ttls,
    load_resilience_config,
    load_yaml_config,
)
from bastion.core.exceptions import ErrorKind


@pytest.fixture
def env():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None)


class TestSettings:
    """Tests for environment settings."""

    def test_defaults(self, env):
        assert env.redis_cache_enabled is False
        assert env.retry_max_attempts == 3
        assert env.circuit_breaker_failure_threshold == 5
        assert env.is_production is False

    def test_max_delay_below_base_delay_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, retry_base_delay=10.0, retry_max_delay=1.0)

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("REDIS_CACHE_ENABLED", "true")
        monkeypatch.setenv("ENVIRONMENT", "production")

        env = Settings(_env_file=None)

        assert env.redis_cache_enabled is True
        assert env.is_production is True


class TestModels:
    """Tests for component configuration models."""

    def test_rate_limiter_capacity_defaults_to_rate(self):
        config = RateLimiterConfig(tokens_per_interval=30, interval_ms=60_000)
        assert config.capacity == 30
        assert config.refill_rate == pytest.approx(30 / 60_000)

    def test_rate_limiter_burst_limit(self):
        config = RateLimiterConfig(tokens_per_interval=30, interval_ms=60_000, burst_limit=10)
        assert config.capacity == 10

    def test_rate_limiter_rejects_zero_interval(self):
        with pytest.raises(ValidationError):
            RateLimiterConfig(tokens_per_interval=5, interval_ms=0)

    def test_retry_config_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert ErrorKind.NETWORK in config.retryable_kinds
        assert ErrorKind.VALIDATION not in config.retryable_kinds

    def test_retry_config_rejects_inverted_delays(self):
        with pytest.raises(ValidationError):
            RetryConfig(base_delay=5.0, max_delay=1.0)

    def test_breaker_defaults(self):
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.recovery_mode is RecoveryMode.DECAY
        assert config.idle_eviction_seconds is None

    def test_resilience_defaults(self):
        config = ResilienceConfig()
        assert set(config.rate_limiters) == {"github-core", "github-search", "jira", "general"}
        assert config.rate_limiters["github-search"].capacity == 10
        assert config.cache.default_ttls_by_namespace["health:check"] == 30


class TestYamlLoading:
    """Tests for load_yaml_config and load_resilience_config."""

    def test_missing_file(self, tmp_path):
        assert load_yaml_config(tmp_path / "missing.yaml") == {}

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "bastion.yaml"
        path.write_text("retry: [unclosed")
        assert load_yaml_config(path) == {}

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "bastion.yaml"
        path.write_text("- just\n- a list\n")
        assert load_yaml_config(path) == {}

    def test_env_values_without_yaml(self, tmp_path):
        env = Settings(
            _env_file=None,
            redis_cache_enabled=True,
            retry_max_attempts=5,
            circuit_breaker_failure_threshold=2,
        )
        config = load_resilience_config(tmp_path / "missing.yaml", env=env)

        assert config.cache.enabled is True
        assert config.recovery.retry.max_attempts == 5
        assert config.recovery.circuit_breaker.failure_threshold == 2

    def test_yaml_overrides_env(self, tmp_path, env):
        path = tmp_path / "bastion.yaml"
        path.write_text(
            "retry:\n"
            "  max_attempts: 7\n"
            "circuit_breaker:\n"
            "  recovery_mode: reset\n"
            "recovery:\n"
            "  graceful_degradation: false\n"
        )
        config = load_resilience_config(path, env=env)

        assert config.recovery.retry.max_attempts == 7
        assert config.recovery.retry.base_delay == env.retry_base_delay
        assert config.recovery.circuit_breaker.recovery_mode is RecoveryMode.RESET
        assert config.recovery.graceful_degradation is False

    def test_rate_limiters_merge_with_defaults(self, tmp_path, env):
        path = tmp_path / "bastion.yaml"
        path.write_text(
            "rate_limiters:\n"
            "  jira:\n"
            "    tokens_per_interval: 100\n"
            "    interval_ms: 60000\n"
            "  confluence:\n"
            "    tokens_per_interval: 10\n"
            "    interval_ms: 1000\n"
            "    burst_limit: 2\n"
        )
        config = load_resilience_config(path, env=env)

        assert config.rate_limiters["jira"].tokens_per_interval == 100
        assert config.rate_limiters["jira"].burst_limit is None
        assert config.rate_limiters["confluence"].capacity == 2
        assert "github-core" in config.rate_limiters

    def test_namespace_ttls_merge_with_defaults(self, tmp_path, env):
        path = tmp_path / "bastion.yaml"
        path.write_text(
            "cache:\n"
            "  l1_max_entries: 50\n"
            "  default_ttls_by_namespace:\n"
            "    jira:issues: 120\n"
        )
        config = load_resilience_config(path, env=env)

        ttls = config.cache.default_ttls_by_namespace
        assert ttls["jira:issues"] == 120
        assert ttls["jira:boards"] == default_namespace_ttls()["jira:boards"]
        assert config.cache.l1_max_entries == 50

    def test_invalid_section_raises(self, tmp_path, env):
        path = tmp_path / "bastion.yaml"
        path.write_text("retry:\n  max_attempts: 0\n")
        with pytest.raises(ValidationError):
            load_resilience_config(path, env=env)

    def test_sweep_interval(self, tmp_path, env):
        path = tmp_path / "bastion.yaml"
        path.write_text("rate_limit_sweep_interval: 60\n")
        assert load_resilience_config(path, env=env).rate_limit_sweep_interval == 60
