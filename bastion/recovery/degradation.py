"""Degraded payloads returned when a caller tolerates partial results.

The payload shape is chosen by the operation's declared category, never by
its name. Every payload carries ``error: True`` and ``partial: True`` so it
cannot be mistaken for a real result.
"""

from datetime import datetime, timezone
from typing import Any

from bastion.core.classifier import sanitize
from bastion.core.exceptions import BastionError
from bastion.recovery.models import OperationCategory, RecoveryContext


def _base_payload(
    error: BastionError, context: RecoveryContext[Any], message: str
) -> dict[str, Any]:
    return {
        "error": True,
        "partial": True,
        "message": message,
        "details": sanitize(error.message),
        "code": error.code,
        "retryable": error.retryable,
        "degradation_reason": f"Error in {context.tool_name}.{context.operation_name}",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def degraded_report(error: BastionError, context: RecoveryContext[Any]) -> dict[str, Any]:
    return _base_payload(error, context, "Report generation partially failed")


def degraded_metrics(error: BastionError, context: RecoveryContext[Any]) -> dict[str, Any]:
    payload = _base_payload(error, context, "Metrics calculation partially failed")
    payload["metrics"] = {}
    payload["unavailable_metrics"] = [context.operation_name]
    return payload


def degraded_data(error: BastionError, context: RecoveryContext[Any]) -> dict[str, Any]:
    payload = _base_payload(error, context, "Data retrieval partially failed")
    payload["data"] = []
    payload["unavailable_data"] = context.operation_name
    return payload


DEGRADATION_STRATEGIES = {
    OperationCategory.REPORT: degraded_report,
    OperationCategory.METRICS: degraded_metrics,
    OperationCategory.DATA_RETRIEVAL: degraded_data,
}


def degrade(error: BastionError, context: RecoveryContext[Any]) -> dict[str, Any] | None:
    """Degraded payload for the context's category, or None for OTHER."""
    strategy = DEGRADATION_STRATEGIES.get(context.category)
    if strategy is None:
        return None
    return strategy(error, context)
