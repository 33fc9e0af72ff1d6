"""Core error taxonomy, classification and configuration."""

from bastion.core.classifier import (
    ClassificationRule,
    ErrorClassifier,
    extract_retry_after,
    sanitize,
)
from bastion.core.config import (
    CacheConfig,
    CircuitBreakerConfig,
    OptimizerConfig,
    RateLimiterConfig,
    RecoveryConfig,
    RecoveryMode,
    ResilienceConfig,
    RetryConfig,
    Settings,
    load_resilience_config,
    settings,
)
from bastion.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    BastionError,
    CacheError,
    CircuitBreakerOpenError,
    ConfigurationError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    ReportGenerationError,
    SecurityError,
    ServerError,
    TimeoutError,
    UnknownError,
    ValidationError,
)

__all__ = [
    # Errors
    "ErrorKind",
    "BastionError",
    "NetworkError",
    "AuthenticationError",
    "AuthorizationError",
    "RateLimitError",
    "ValidationError",
    "TimeoutError",
    "ServerError",
    "CacheError",
    "ReportGenerationError",
    "ConfigurationError",
    "SecurityError",
    "CircuitBreakerOpenError",
    "UnknownError",
    # Classification
    "ErrorClassifier",
    "ClassificationRule",
    "sanitize",
    "extract_retry_after",
    # Configuration
    "Settings",
    "settings",
    "ResilienceConfig",
    "RecoveryConfig",
    "RetryConfig",
    "CircuitBreakerConfig",
    "RecoveryMode",
    "RateLimiterConfig",
    "CacheConfig",
    "OptimizerConfig",
    "load_resilience_config",
]
