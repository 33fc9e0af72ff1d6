"""Bastion - resilience layer for analytics backends.

Bastion sits between an analytics backend and its upstream APIs (Jira,
GitHub) and keeps it within quota and available: per-service token bucket
rate limiting, a two-tier (memory + Redis) response cache with
lifecycle-aware TTLs, and circuit breaker + retry error recovery that can
degrade to partial results.

Basic usage:
    >>> from bastion import create_service, RecoveryContext
    >>> service = create_service()
    >>> service.acquire("jira")
    >>> sprint = await service.execute_with_recovery(
    ...     lambda: jira.get_sprint(42), RecoveryContext("jira", "getSprint")
    ... )
"""

from dotenv import load_dotenv

load_dotenv()

from bastion.cache import CacheKeyBuilder, CacheNamespace, TwoTierCache
from bastion.core import (
    AuthenticationError,
    AuthorizationError,
    BastionError,
    CacheError,
    CircuitBreakerOpenError,
    ConfigurationError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    ResilienceConfig,
    ServerError,
    TimeoutError,
    ValidationError,
    load_resilience_config,
    settings,
)
from bastion.recovery import ErrorRecoveryManager, OperationCategory, RecoveryContext
from bastion.service import ResilienceService, create_service

__version__ = "0.1.0"

__all__ = [
    # Main interface
    "ResilienceService",
    "create_service",
    "ErrorRecoveryManager",
    "RecoveryContext",
    "OperationCategory",
    "TwoTierCache",
    "CacheKeyBuilder",
    "CacheNamespace",
    # Configuration
    "settings",
    "ResilienceConfig",
    "load_resilience_config",
    # Exceptions
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
    "ConfigurationError",
    "CircuitBreakerOpenError",
]
