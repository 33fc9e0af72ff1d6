"""Error analytics: aggregate counts plus a bounded buffer of recent failures."""

import time
from collections import Counter, deque
from collections.abc import Callable
from typing import Any

from bastion.core.classifier import sanitize
from bastion.core.exceptions import BastionError, ErrorKind
from bastion.recovery.models import ErrorRecord, RecoveryContext, breaker_key

# Recurring kinds worth a tuning hint, checked against RECOMMENDATION_THRESHOLD
_RECOMMENDATIONS = {
    ErrorKind.NETWORK: (
        "Consider connection pooling and health checks for network stability"
    ),
    ErrorKind.TIMEOUT: "Review timeout configurations and circuit breaker thresholds",
    ErrorKind.RATE_LIMIT: "Lower request rates or add caching in front of this tool",
    ErrorKind.AUTHENTICATION: (
        "Review API credentials and implement token refresh mechanisms"
    ),
    ErrorKind.VALIDATION: (
        "Enhance input validation and provide better error messages to users"
    ),
    ErrorKind.SERVER: "Upstream is unstable; consider longer breaker timeouts",
}

RECOMMENDATION_THRESHOLD = 10


class ErrorAnalytics:
    """Tracks failures per tool, per kind and per operation.

    The recent buffer holds at most buffer_size records; the oldest record is
    evicted first.
    """

    def __init__(self, buffer_size: int = 100, clock: Callable[[], float] = time.time):
        self.buffer_size = buffer_size
        self._clock = clock
        self.total_errors = 0
        self.errors_by_tool: Counter[str] = Counter()
        self.errors_by_kind: Counter[ErrorKind] = Counter()
        self.errors_by_operation: Counter[str] = Counter()
        self._patterns: Counter[tuple[str, ErrorKind]] = Counter()
        self.recent: deque[ErrorRecord] = deque(maxlen=buffer_size)

    def record(self, error: BastionError, context: RecoveryContext[Any]) -> ErrorRecord:
        record = ErrorRecord(
            timestamp=self._clock(),
            tool_name=context.tool_name,
            operation_name=context.operation_name,
            error_kind=error.kind,
            code=error.code,
            message=sanitize(error.message),
        )
        self.total_errors += 1
        self.errors_by_tool[context.tool_name] += 1
        self.errors_by_kind[error.kind] += 1
        self.errors_by_operation[context.key] += 1
        self._patterns[(context.tool_name, error.kind)] += 1
        self.recent.append(record)
        return record

    def get_analytics(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "errors_by_tool": dict(self.errors_by_tool),
            "errors_by_kind": {kind.value: n for kind, n in self.errors_by_kind.items()},
            "recent_errors": [record.to_dict() for record in self.recent],
        }

    def get_summary(self, top_n: int = 5) -> dict[str, Any]:
        """Top failing operations and patterns, with tuning recommendations.

        Returns:
            Dict with total_errors, top_operations, top_patterns and
            recommendations (one per kind recurring more than
            RECOMMENDATION_THRESHOLD times for some tool)
        """
        top_patterns = [
            {"pattern": f"{tool}:{kind.value}", "count": count}
            for (tool, kind), count in self._patterns.most_common(top_n)
        ]

        recommendations: list[str] = []
        for (tool, kind), count in self._patterns.most_common():
            if count <= RECOMMENDATION_THRESHOLD:
                break
            hint = _RECOMMENDATIONS.get(kind)
            if hint:
                recommendations.append(f"{tool}: {hint} ({count} {kind.value} errors)")

        return {
            "total_errors": self.total_errors,
            "top_operations": [
                {"operation": key, "count": count}
                for key, count in self.errors_by_operation.most_common(top_n)
            ],
            "top_patterns": top_patterns,
            "recommendations": recommendations,
        }

    def errors_for(self, tool_name: str, operation_name: str) -> int:
        return self.errors_by_operation[breaker_key(tool_name, operation_name)]

    def reset(self) -> None:
        self.total_errors = 0
        self.errors_by_tool.clear()
        self.errors_by_kind.clear()
        self.errors_by_operation.clear()
        self._patterns.clear()
        self.recent.clear()
