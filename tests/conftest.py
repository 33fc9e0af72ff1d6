"""Pytest configuration and fixtures for Bastion tests."""

import pytest

from bastion.core.config import CacheConfig, RecoveryConfig, RetryConfig
from bastion.cache.service import TwoTierCache


class FakeClock:
    """Manually advanced clock, usable wherever a time function is expected."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)


@pytest.fixture
def clock():
    """Monotonic-style fake clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def wall_clock():
    """Epoch-style fake clock."""
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def sleep(clock):
    """Recording sleep that advances the fake clock."""
    return RecordingSleep(clock)


@pytest.fixture
def no_jitter():
    """Jitter source that always returns 0."""
    return lambda: 0.0


@pytest.fixture
def fast_recovery_config():
    """Recovery config with small, deterministic retry delays."""
    return RecoveryConfig(
        retry=RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0),
    )


@pytest.fixture
def memory_cache(wall_clock):
    """Cache with L2 disabled (L1 only)."""
    return TwoTierCache(CacheConfig(enabled=False, l1_max_entries=100), clock=wall_clock)
