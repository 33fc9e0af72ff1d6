"""Structured logging and OpenTelemetry metrics for Bastion."""

from bastion.observability.logging import (
    LogEvents,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)
from bastion.observability.metrics import get_meter

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogEvents",
    "get_meter",
]
