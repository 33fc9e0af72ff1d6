"""Retry loop with exponential backoff and jitter."""

import asyncio
import inspect
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from bastion.core.classifier import ErrorClassifier
from bastion.core.exceptions import BastionError, RateLimitError
from bastion.observability.logging import LogEvents, get_logger
from bastion.observability.metrics import record_retry
from bastion.recovery.models import RecoveryContext, RetryConfig

T = TypeVar("T")

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

JITTER_RATIO = 0.1


def compute_delay(
    attempt: int,
    config: RetryConfig,
    error: BastionError | None = None,
    random_fn: Callable[[], float] = random.random,
) -> float:
    """Delay (seconds) before the attempt following `attempt`.

    min(base_delay * backoff_multiplier ** (attempt - 1), max_delay) plus up
    to 10% jitter. A rate-limit error's retry_after raises the delay, capped
    at max_delay.

    Example:
        >>> compute_delay(3, RetryConfig(base_delay=1.0), random_fn=lambda: 0.0)
        4.0
    """
    delay = min(config.base_delay * config.backoff_multiplier ** (attempt - 1), config.max_delay)
    delay += delay * JITTER_RATIO * random_fn()
    if isinstance(error, RateLimitError):
        delay = max(delay, min(float(error.retry_after), config.max_delay))
    return delay


async def execute_with_retry(
    operation: Callable[[], Awaitable[T] | T],
    context: RecoveryContext[T],
    config: RetryConfig,
    classifier: ErrorClassifier,
    sleep: Sleep = asyncio.sleep,
    random_fn: Callable[[], float] = random.random,
) -> T:
    """Run operation, retrying transient failures.

    Each failure is classified exactly once into a typed error. The loop
    stops as soon as an error is not retryable or attempts run out.

    Args:
        operation: Zero-argument callable (sync or async)
        context: Identifies the call for errors, logs and metrics
        config: Attempt count and backoff settings
        classifier: Maps raw failures to typed errors
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The operation's result

    Raises:
        BastionError: The typed error of the final failed attempt
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as e:
            error = classifier.enhance(e, {**context.error_context(), "attempts": attempt})
            retryable = error.retryable and error.kind in config.retryable_kinds
            if not retryable or attempt >= config.max_attempts:
                if error is e:
                    raise
                raise error from e

            delay = compute_delay(attempt, config, error, random_fn)
            logger.info(
                LogEvents.RETRY_SCHEDULED,
                tool=context.tool_name,
                operation=context.operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                kind=error.kind.value,
                delay=round(delay, 3),
            )
            record_retry(context.tool_name, error.kind.value)
            await sleep(delay)
