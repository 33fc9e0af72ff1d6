"""Recovery state, context and configuration models."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from bastion.core.config import (
    CircuitBreakerConfig,
    RecoveryConfig,
    RecoveryMode,
    RetryConfig,
)
from bastion.core.exceptions import ErrorKind

T = TypeVar("T")

__all__ = [
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


class OperationCategory(str, Enum):
    """What an operation produces; decides the shape of a degraded result."""

    REPORT = "report"
    METRICS = "metrics"
    DATA_RETRIEVAL = "data_retrieval"
    OTHER = "other"


def _escape(part: str) -> str:
    return part.replace("%", "%25").replace(":", "%3A")


def breaker_key(tool_name: str, operation_name: str) -> str:
    """Registry key for an operation; separators in either part are escaped."""
    return f"{_escape(tool_name)}:{_escape(operation_name)}"


@dataclass
class CircuitBreakerState:
    """Breaker state for one (tool, operation) pair.

    Attributes:
        failure_count: Failures in the current monitoring window
        success_count: Successes since the state was created
        is_open: Calls are being short-circuited
        half_open: Open timeout elapsed; calls are probing recovery
        last_reset_time: Start of the current monitoring window
        opened_at: When the breaker last opened
        last_failure_time: Most recent failure
        last_activity: Most recent success or failure (for idle eviction)
    """

    last_reset_time: float
    failure_count: int = 0
    success_count: int = 0
    is_open: bool = False
    half_open: bool = False
    opened_at: float | None = None
    last_failure_time: float | None = None
    last_activity: float | None = None

    @property
    def status(self) -> str:
        if self.is_open:
            return "open"
        if self.half_open:
            return "half_open"
        return "closed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "is_open": self.is_open,
            "half_open": self.half_open,
            "opened_at": self.opened_at,
            "last_failure_time": self.last_failure_time,
            "last_reset_time": self.last_reset_time,
        }


@dataclass(frozen=True)
class ErrorRecord:
    """One failure kept in the analytics ring buffer (message is sanitized)."""

    timestamp: float
    tool_name: str
    operation_name: str
    error_kind: ErrorKind
    code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "tool_name": self.tool_name,
            "operation_name": self.operation_name,
            "error_kind": self.error_kind.value,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class RecoveryContext(Generic[T]):
    """Describes one protected call.

    Attributes:
        tool_name: Upstream tool (e.g. "jira")
        operation_name: Operation on that tool (e.g. "getSprint")
        fallback: Called instead of the operation while its breaker is open
        partial_result_tolerance: Caller accepts a degraded payload on failure
        cleanup: Run after a final failure (sync or async)
        category: Shape of the degraded payload
        metadata: Extra structured context for logs and errors
    """

    tool_name: str
    operation_name: str
    fallback: Callable[[], Awaitable[T] | T] | None = None
    partial_result_tolerance: bool = False
    cleanup: Callable[[], Awaitable[None] | None] | None = None
    category: OperationCategory = OperationCategory.OTHER
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return breaker_key(self.tool_name, self.operation_name)

    def error_context(self) -> dict[str, Any]:
        return {
            "tool": self.tool_name,
            "operation": self.operation_name,
            **self.metadata,
        }
