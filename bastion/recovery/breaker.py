"""Per-operation circuit breakers.

Each "tool:operation" key owns a CircuitBreakerState:

    closed    -> failure_count >= failure_threshold within monitoring_period
              -> open
    open      -> now - opened_at > timeout
              -> half_open (calls allowed, probing recovery)
    half_open -> success -> closed
              -> failure -> open again

On success the failure count decays by one (RecoveryMode.DECAY) or resets
to zero (RecoveryMode.RESET).
"""

import time
from collections.abc import Callable
from typing import Any

from bastion.observability.logging import LogEvents, get_logger
from bastion.observability.metrics import record_breaker_opened
from bastion.recovery.models import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    RecoveryMode,
)

logger = get_logger(__name__)


class CircuitBreakerRegistry:
    """Owns every breaker state for one ResilienceService."""

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._states: dict[str, CircuitBreakerState] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._states

    def get_state(self, key: str) -> CircuitBreakerState:
        """State for key, created closed on first use."""
        state = self._states.get(key)
        if state is None:
            state = CircuitBreakerState(last_reset_time=self._clock())
            self._states[key] = state
        return state

    def is_open(self, key: str) -> bool:
        """Whether calls for key must be short-circuited.

        Also applies time-based transitions: the monitoring window reset for
        closed breakers, and open -> half-open once the timeout has elapsed.
        """
        state = self._states.get(key)
        if state is None:
            return False
        now = self._clock()

        if not state.is_open:
            if now - state.last_reset_time > self.config.monitoring_period:
                state.failure_count = 0
                state.last_reset_time = now
            return False

        if state.opened_at is not None and now - state.opened_at > self.config.timeout:
            state.is_open = False
            state.half_open = True
            logger.info(LogEvents.CIRCUIT_BREAKER_HALF_OPEN, breaker=key)
            return False
        return True

    def record_success(self, key: str) -> None:
        state = self.get_state(key)
        state.success_count += 1
        state.last_activity = self._clock()

        if self.config.recovery_mode is RecoveryMode.RESET:
            state.failure_count = 0
        else:
            state.failure_count = max(0, state.failure_count - 1)

        if state.half_open:
            state.half_open = False
            if self.config.recovery_mode is RecoveryMode.RESET:
                state.last_reset_time = state.last_activity
            logger.info(
                LogEvents.CIRCUIT_BREAKER_CLOSED,
                breaker=key,
                failure_count=state.failure_count,
            )

    def record_failure(self, key: str) -> None:
        state = self.get_state(key)
        now = self._clock()
        state.failure_count += 1
        state.last_failure_time = now
        state.last_activity = now

        if state.half_open or (
            not state.is_open and state.failure_count >= self.config.failure_threshold
        ):
            reopened = state.half_open
            state.is_open = True
            state.half_open = False
            state.opened_at = now
            logger.warning(
                LogEvents.CIRCUIT_BREAKER_OPENED,
                breaker=key,
                failure_count=state.failure_count,
                threshold=self.config.failure_threshold,
                reopened=reopened,
            )
            record_breaker_opened(key)

    def reset(self, key: str | None = None) -> None:
        """Forget one breaker's state, or every breaker's."""
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)
        logger.info(LogEvents.CIRCUIT_BREAKER_RESET, breaker=key or "*")

    def sweep_idle(self, now: float | None = None) -> int:
        """Drop closed states idle longer than idle_eviction_seconds.

        No-op unless idle_eviction_seconds is configured. Open and half-open
        states are always kept.
        """
        idle_after = self.config.idle_eviction_seconds
        if idle_after is None:
            return 0
        now = self._clock() if now is None else now
        stale = [
            key
            for key, state in self._states.items()
            if not state.is_open
            and not state.half_open
            and now - (state.last_activity or state.last_reset_time) > idle_after
        ]
        for key in stale:
            del self._states[key]
        if stale:
            logger.debug("breaker_states_evicted", count=len(stale))
        return len(stale)

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {key: state.to_dict() for key, state in self._states.items()}
