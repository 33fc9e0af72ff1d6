"""Error recovery orchestrator.

execute_with_recovery() is the single entry point for protected upstream
calls:

    1. Breaker open    -> fallback (if any and enabled), else
                          CircuitBreakerOpenError
    2. Breaker closed  -> retry loop (execute_with_retry)
    3. Success         -> breaker success
    4. Final failure   -> breaker failure, cleanup, structured log,
                          analytics, then a degraded payload (if the
                          caller tolerates one) or the typed error
"""

import asyncio
import functools
import inspect
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from bastion.core.classifier import ErrorClassifier, sanitize
from bastion.core.exceptions import BastionError, CircuitBreakerOpenError
from bastion.observability.logging import LogEvents, get_logger
from bastion.observability.metrics import record_degraded_result
from bastion.recovery.analytics import ErrorAnalytics
from bastion.recovery.breaker import CircuitBreakerRegistry
from bastion.recovery.degradation import degrade
from bastion.recovery.models import (
    CircuitBreakerConfig,
    RecoveryConfig,
    RecoveryContext,
    RetryConfig,
)
from bastion.recovery.retry import Sleep, execute_with_retry

T = TypeVar("T")

logger = get_logger(__name__)


class ErrorRecoveryManager:
    """Circuit breaker + retry orchestrator.

    Example:
        >>> manager = ErrorRecoveryManager()
        >>> context = RecoveryContext("jira", "getSprint")
        >>> sprint = await manager.execute_with_recovery(lambda: jira.get_sprint(42), context)
    """

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        classifier: ErrorClassifier | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
        analytics: ErrorAnalytics | None = None,
    ):
        """Initialize manager.

        Args:
            config: Retry, breaker and degradation settings
            classifier: Error classifier (defaults to the built-in rule table)
            clock: Monotonic clock for breaker timing (injectable for tests)
            sleep: Backoff sleep (injectable for tests)
            random_fn: Jitter source in [0, 1)
            analytics: Error analytics sink
        """
        self.config = config or RecoveryConfig()
        self.classifier = classifier or ErrorClassifier(
            retryable_kinds=self.config.retry.retryable_kinds
        )
        self.breakers = CircuitBreakerRegistry(self.config.circuit_breaker, clock=clock)
        self.analytics = analytics or ErrorAnalytics(self.config.analytics_buffer_size)
        self._sleep = sleep
        self._random = random_fn

    async def execute_with_recovery(
        self,
        operation: Callable[[], Awaitable[T] | T],
        context: RecoveryContext[T],
    ) -> T | dict[str, Any]:
        """Run operation under breaker, retry and degradation policy.

        Args:
            operation: Zero-argument callable (sync or async)
            context: Identifies the call and its fallback/degradation options

        Returns:
            The operation's (or fallback's) result, or a degraded payload
            when the context tolerates partial results

        Raises:
            BastionError: Typed, sanitized error when nothing else applies
        """
        key = context.key

        if self.breakers.is_open(key):
            if context.fallback is not None and self.config.fallback_enabled:
                logger.warning(
                    LogEvents.FALLBACK_USED,
                    tool=context.tool_name,
                    operation=context.operation_name,
                    reason="circuit_breaker_open",
                )
                try:
                    return await _call(context.fallback)
                except Exception as e:
                    error = self.classifier.enhance(e, context.error_context())
                    logger.warning(
                        LogEvents.FALLBACK_FAILED,
                        tool=context.tool_name,
                        operation=context.operation_name,
                        kind=error.kind.value,
                    )
                    return await self._handle_failure(error, context, ran=False)

            error = CircuitBreakerOpenError(
                f"Circuit breaker open for {context.tool_name}.{context.operation_name}",
                context={
                    **context.error_context(),
                    "breaker": self.breakers.get_state(key).to_dict(),
                },
            )
            return await self._handle_failure(error, context, ran=False)

        try:
            result = await execute_with_retry(
                operation,
                context,
                self.config.retry,
                self.classifier,
                sleep=self._sleep,
                random_fn=self._random,
            )
        except BastionError as error:
            return await self._handle_failure(error, context, ran=True)

        self.breakers.record_success(key)
        return result

    def update_config(
        self,
        retry: RetryConfig | dict[str, Any] | None = None,
        circuit_breaker: CircuitBreakerConfig | dict[str, Any] | None = None,
        fallback_enabled: bool | None = None,
        graceful_degradation: bool | None = None,
    ) -> RecoveryConfig:
        """Tune settings at runtime. Partial dicts are merged into the current values.

        Raises:
            pydantic.ValidationError: If the merged settings are invalid
        """
        data = self.config.model_dump()
        if retry is not None:
            data["retry"].update(
                retry.model_dump() if isinstance(retry, RetryConfig) else retry
            )
        if circuit_breaker is not None:
            data["circuit_breaker"].update(
                circuit_breaker.model_dump()
                if isinstance(circuit_breaker, CircuitBreakerConfig)
                else circuit_breaker
            )
        if fallback_enabled is not None:
            data["fallback_enabled"] = fallback_enabled
        if graceful_degradation is not None:
            data["graceful_degradation"] = graceful_degradation

        self.config = RecoveryConfig.model_validate(data)
        self.breakers.config = self.config.circuit_breaker
        self.classifier.retryable_kinds = set(self.config.retry.retryable_kinds)
        logger.info("recovery_config_updated", config=self.config.model_dump(mode="json"))
        return self.config

    def get_error_analytics(self) -> dict[str, Any]:
        return self.analytics.get_analytics()

    def get_circuit_breaker_stats(self) -> dict[str, dict[str, Any]]:
        return self.breakers.get_stats()

    def reset_circuit_breaker(self, key: str | None = None) -> None:
        self.breakers.reset(key)

    async def _handle_failure(
        self,
        error: BastionError,
        context: RecoveryContext[Any],
        ran: bool,
    ) -> dict[str, Any]:
        if ran:
            self.breakers.record_failure(context.key)
            await self._cleanup(context)

        log_data = error.to_log_dict()
        log_data["message"] = sanitize(log_data["message"])
        logger.error(
            LogEvents.OPERATION_FAILED,
            tool=context.tool_name,
            operation=context.operation_name,
            breaker=self.breakers.get_state(context.key).status,
            **log_data,
        )
        logger.debug(
            LogEvents.OPERATION_TRACEBACK,
            tool=context.tool_name,
            operation=context.operation_name,
            exc_info=error,
        )
        self.analytics.record(error, context)

        if context.partial_result_tolerance and self.config.graceful_degradation:
            payload = degrade(error, context)
            if payload is not None:
                logger.warning(
                    LogEvents.DEGRADED_RESULT,
                    tool=context.tool_name,
                    operation=context.operation_name,
                    category=context.category.value,
                )
                record_degraded_result(context.category.value)
                return payload

        raise error

    async def _cleanup(self, context: RecoveryContext[Any]) -> None:
        if context.cleanup is None:
            return
        try:
            await _call(context.cleanup)
        except Exception as e:
            # Cleanup must not mask the operation's error
            logger.error(
                LogEvents.CLEANUP_FAILED,
                tool=context.tool_name,
                operation=context.operation_name,
                error=sanitize(str(e)),
            )


async def _call(func: Callable[[], Any]) -> Any:
    result = func()
    if inspect.isawaitable(result):
        result = await result
    return result


def with_recovery(
    manager: ErrorRecoveryManager,
    operation: Callable[..., Awaitable[T] | T],
    context: RecoveryContext[T],
) -> Callable[..., Awaitable[T | dict[str, Any]]]:
    """Wrap a callable so every call runs through execute_with_recovery.

    Example:
        >>> get_sprint = with_recovery(manager, jira.get_sprint, RecoveryContext("jira", "getSprint"))
        >>> sprint = await get_sprint(42)
    """

    @functools.wraps(operation)
    async def wrapper(*args: Any, **kwargs: Any) -> T | dict[str, Any]:
        return await manager.execute_with_recovery(
            lambda: operation(*args, **kwargs), context
        )

    return wrapper
