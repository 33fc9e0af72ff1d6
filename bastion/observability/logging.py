"""Structured logging configuration for Bastion.

Logs are JSON in production and colored console output in development.

Configuration:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - LOG_FORMAT: json, console (default: json in production, console in dev)
    - ENVIRONMENT: development, production (affects format default)

Usage:
    >>> from bastion.observability.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.warning(LogEvents.RATE_LIMITED, service="jira", retry_after=3)

Standard Events:
    Recovery:
        - operation_failed: Operation failed after retries (sanitized)
        - operation_traceback: Raw traceback (debug only)
        - retry_scheduled: Backoff sleep before another attempt
        - fallback_used: Fallback executed instead of the operation
        - degraded_result: Degraded payload returned

    Circuit breaker:
        - circuit_breaker_opened / _half_open / _closed

    Cache:
        - cache_error, cache_cleared, optimization_completed
"""

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    is_production: bool | None = None,
) -> None:
    """Configure structured logging for the application.

    Safe to call multiple times (subsequent calls are no-ops).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Default from LOG_LEVEL env.
        log_format: Output format (json, console). Default based on environment.
        is_production: Override production detection. Default from ENVIRONMENT env.
    """
    global _configured
    if _configured:
        return

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()

    if is_production is None:
        is_production = os.getenv("ENVIRONMENT", "development").lower() == "production"

    if log_format is None:
        log_format = os.getenv("LOG_FORMAT", "json" if is_production else "console")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring logging on first use.

    Args:
        name: Logger name (typically __name__)
    """
    if not _configured:
        configure_logging()

    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


def bind_context(**kwargs: Any) -> None:
    """Bind context variables (request_id, tool, ...) to subsequent log calls."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()


class LogEvents:
    """Standard event names for structured logging.

    Example:
        >>> logger.info(LogEvents.CIRCUIT_BREAKER_OPENED, key="jira:getSprint")
    """

    # Recovery events
    OPERATION_FAILED = "operation_failed"
    OPERATION_TRACEBACK = "operation_traceback"
    RETRY_SCHEDULED = "retry_scheduled"
    FALLBACK_USED = "fallback_used"
    FALLBACK_FAILED = "fallback_failed"
    DEGRADED_RESULT = "degraded_result"
    CLEANUP_FAILED = "cleanup_failed"

    # Circuit breaker events
    CIRCUIT_BREAKER_OPENED = "circuit_breaker_opened"
    CIRCUIT_BREAKER_HALF_OPEN = "circuit_breaker_half_open"
    CIRCUIT_BREAKER_CLOSED = "circuit_breaker_closed"
    CIRCUIT_BREAKER_RESET = "circuit_breaker_reset"

    # Rate limit events
    RATE_LIMITED = "rate_limited"
    BUCKETS_SWEPT = "buckets_swept"

    # Cache events
    CACHE_ERROR = "cache_error"
    CACHE_CLEARED = "cache_cleared"
    OPTIMIZATION_COMPLETED = "optimization_completed"
    OPTIMIZATION_FAILED = "optimization_failed"

    # Lifecycle events
    SERVICE_STARTED = "service_started"
    SERVICE_CLOSED = "service_closed"
