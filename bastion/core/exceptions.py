"""Exception hierarchy for the Bastion resilience layer.

Every failure that leaves the resilience layer is one of these typed errors.
Each class maps to exactly one ErrorKind and carries a stable machine code,
a retryability default and a sanitized user-facing message.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of error kinds recognised by the classifier."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    SERVER = "server"
    CACHE = "cache"
    REPORT_GENERATION = "report_generation"
    CONFIGURATION = "configuration"
    SECURITY = "security"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    UNKNOWN = "unknown"


class BastionError(Exception):
    """Base exception for all Bastion errors.

    Attributes:
        kind: Error kind used for retry decisions and analytics
        code: Stable machine-readable code
        retryable: Whether the orchestrator may retry the failed operation
        message: Sanitized internal message (safe to log)
        user_message: Message safe to surface to end users
        context: Structured, sanitized context
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    code: str = "UNKNOWN_ERROR"
    retryable: bool = True
    default_user_message: str = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: str,
        *,
        user_message: str | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        if retryable is not None:
            self.retryable = retryable
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """User-facing representation (never includes raw upstream text)."""
        return {
            "code": self.code,
            "message": self.user_message,
            "retryable": self.retryable,
        }

    def to_log_dict(self) -> dict[str, Any]:
        """Structured representation for logs and analytics."""
        return {
            "error_type": type(self).__name__,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
        }


class NetworkError(BastionError):
    """Upstream could not be reached (refused, DNS, reset)."""

    kind = ErrorKind.NETWORK
    code = "NETWORK_ERROR"
    retryable = True
    default_user_message = "The service appears to be unavailable. Please try again later."


class AuthenticationError(BastionError):
    """Credentials were rejected by the upstream service."""

    kind = ErrorKind.AUTHENTICATION
    code = "AUTHENTICATION_ERROR"
    retryable = False
    default_user_message = (
        "Your authentication credentials may have expired. Please check your API tokens."
    )


class AuthorizationError(BastionError):
    """Authenticated, but not allowed to access the resource."""

    kind = ErrorKind.AUTHORIZATION
    code = "AUTHORIZATION_ERROR"
    retryable = False
    default_user_message = "You do not have permission to access this resource."


class RateLimitError(BastionError):
    """Rate limit exceeded, locally or upstream."""

    kind = ErrorKind.RATE_LIMIT
    code = "RATE_LIMIT_ERROR"
    retryable = True
    default_user_message = "Too many requests. Please wait before trying again."

    def __init__(
        self,
        message: str,
        *,
        retry_after: int = 60,
        user_message: str | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            user_message=user_message
            or f"Too many requests. Please wait {retry_after} seconds.",
            retryable=retryable,
            context=context,
        )
        self.retry_after = retry_after

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data

    def to_log_dict(self) -> dict[str, Any]:
        data = super().to_log_dict()
        data["retry_after"] = self.retry_after
        return data


class ValidationError(BastionError):
    """Request parameters were rejected."""

    kind = ErrorKind.VALIDATION
    code = "VALIDATION_ERROR"
    retryable = False
    default_user_message = "The request parameters are invalid. Please check your input."


class TimeoutError(BastionError):
    """Operation did not complete in time."""

    kind = ErrorKind.TIMEOUT
    code = "TIMEOUT_ERROR"
    retryable = True
    default_user_message = "The operation took too long to complete. Please try again."


class ServerError(BastionError):
    """Upstream returned a 5xx response."""

    kind = ErrorKind.SERVER
    code = "SERVER_ERROR"
    retryable = True
    default_user_message = (
        "The remote service is experiencing issues. Please try again later."
    )


class CacheError(BastionError):
    """Cache operation failed. Non-fatal: callers continue without cache."""

    kind = ErrorKind.CACHE
    code = "CACHE_ERROR"
    retryable = True
    default_user_message = "Caching service unavailable. Continuing without cache."


class ReportGenerationError(BastionError):
    """Report assembly failed."""

    kind = ErrorKind.REPORT_GENERATION
    code = "REPORT_GENERATION_ERROR"
    retryable = True
    default_user_message = (
        "Unable to generate report. Please check your parameters and try again."
    )


class ConfigurationError(BastionError):
    """Configuration error (missing env vars, invalid settings, unknown service)."""

    kind = ErrorKind.CONFIGURATION
    code = "CONFIGURATION_ERROR"
    retryable = False
    default_user_message = (
        "Configuration issue detected. Please check your environment settings."
    )


class SecurityError(BastionError):
    """Security policy violation."""

    kind = ErrorKind.SECURITY
    code = "SECURITY_ERROR"
    retryable = False
    default_user_message = "Security policy violation detected."


class CircuitBreakerOpenError(BastionError):
    """Circuit breaker is open, preventing execution."""

    kind = ErrorKind.CIRCUIT_BREAKER_OPEN
    code = "CIRCUIT_BREAKER_OPEN"
    retryable = False
    default_user_message = (
        "The service is experiencing issues and has been temporarily disabled "
        "to prevent further problems."
    )


class UnknownError(BastionError):
    """Failure that matched no classification rule."""

    kind = ErrorKind.UNKNOWN
    code = "UNKNOWN_ERROR"
    retryable = True


ERROR_TYPES: dict[ErrorKind, type[BastionError]] = {
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.AUTHORIZATION: AuthorizationError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.TIMEOUT: TimeoutError,
    ErrorKind.SERVER: ServerError,
    ErrorKind.CACHE: CacheError,
    ErrorKind.REPORT_GENERATION: ReportGenerationError,
    ErrorKind.CONFIGURATION: ConfigurationError,
    ErrorKind.SECURITY: SecurityError,
    ErrorKind.CIRCUIT_BREAKER_OPEN: CircuitBreakerOpenError,
    ErrorKind.UNKNOWN: UnknownError,
}


def default_retryable_kinds() -> set[ErrorKind]:
    """Kinds whose error class is retryable by default."""
    return {kind for kind, cls in ERROR_TYPES.items() if cls.retryable}
