"""Circuit breakers, retries, degradation and error analytics."""

from bastion.recovery.analytics import ErrorAnalytics
from bastion.recovery.breaker import CircuitBreakerRegistry
from bastion.recovery.degradation import degrade
from bastion.recovery.manager import ErrorRecoveryManager, with_recovery
from bastion.recovery.models import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    ErrorRecord,
    OperationCategory,
    RecoveryConfig,
    RecoveryContext,
    RecoveryMode,
    RetryConfig,
    breaker_key,
)
from bastion.recovery.retry import compute_delay, execute_with_retry

__all__ = [
    "ErrorRecoveryManager",
    "with_recovery",
    "execute_with_retry",
    "compute_delay",
    "CircuitBreakerRegistry",
    "ErrorAnalytics",
    "degrade",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "ErrorRecord",
    "OperationCategory",
    "RecoveryConfig",
    "RecoveryContext",
    "RecoveryMode",
    "RetryConfig",
    "breaker_key",
]
