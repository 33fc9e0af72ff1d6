"""Unit tests for the retry loop and backoff computation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from bastion.core.classifier import ErrorClassifier
from bastion.core.exceptions import (
    AuthenticationError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from bastion.recovery import RecoveryContext, RetryConfig, compute_delay, execute_with_retry


@pytest.fixture
def retry_config():
    return RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)


@pytest.fixture
def context():
    return RecoveryContext("jira", "getSprint")


@pytest.fixture
def classifier():
    return ErrorClassifier()


class TestComputeDelay:
    def test_exponential_growth(self, retry_config, no_jitter):
        delays = [compute_delay(a, retry_config, random_fn=no_jitter) for a in (1, 2, 3, 4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self, retry_config, no_jitter):
        assert compute_delay(10, retry_config, random_fn=no_jitter) == 10.0

    def test_jitter_is_at_most_ten_percent(self, retry_config):
        assert compute_delay(2, retry_config, random_fn=lambda: 0.999) == pytest.approx(2.1998)

    def test_rate_limit_retry_after_raises_delay(self, retry_config, no_jitter):
        error = RateLimitError("429", retry_after=5)
        assert compute_delay(1, retry_config, error, random_fn=no_jitter) == 5.0

    def test_rate_limit_retry_after_is_capped(self, retry_config, no_jitter):
        error = RateLimitError("429", retry_after=600)
        assert compute_delay(1, retry_config, error, random_fn=no_jitter) == 10.0


class TestExecuteWithRetry:
    async def test_success_first_try(self, context, retry_config, classifier, sleep):
        operation = AsyncMock(return_value={"id": 42})

        result = await execute_with_retry(operation, context, retry_config, classifier, sleep=sleep)

        assert result == {"id": 42}
        assert sleep.delays == []

    async def test_transient_failures_then_success(
        self, context, retry_config, classifier, sleep, no_jitter
    ):
        operation = AsyncMock(
            side_effect=[ConnectionError("refused"), Exception("503 Service Unavailable"), "ok"]
        )

        result = await execute_with_retry(
            operation, context, retry_config, classifier, sleep=sleep, random_fn=no_jitter
        )

        assert result == "ok"
        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_non_retryable_error_is_not_retried(
        self, context, retry_config, classifier, sleep
    ):
        raw = Exception("401 Unauthorized")
        operation = AsyncMock(side_effect=raw)

        with pytest.raises(AuthenticationError) as exc_info:
            await execute_with_retry(operation, context, retry_config, classifier, sleep=sleep)

        assert operation.await_count == 1
        assert sleep.delays == []
        assert exc_info.value.__cause__ is raw
        assert exc_info.value.context["attempts"] == 1

    async def test_attempts_exhausted(self, context, retry_config, classifier, sleep):
        operation = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(NetworkError) as exc_info:
            await execute_with_retry(operation, context, retry_config, classifier, sleep=sleep)

        assert operation.await_count == 3
        assert len(sleep.delays) == 2
        assert exc_info.value.context["attempts"] == 3
        assert exc_info.value.context["tool"] == "jira"

    async def test_typed_error_passes_through(self, context, retry_config, classifier, sleep):
        error = ValidationError("sprint id must be numeric")
        operation = MagicMock(side_effect=error)

        with pytest.raises(ValidationError) as exc_info:
            await execute_with_retry(operation, context, retry_config, classifier, sleep=sleep)

        assert exc_info.value is error
        assert operation.call_count == 1

    async def test_typed_retryable_error_is_retried(
        self, context, retry_config, classifier, sleep
    ):
        operation = MagicMock(side_effect=[ServerError("boom"), "ok"])

        assert (
            await execute_with_retry(operation, context, retry_config, classifier, sleep=sleep)
            == "ok"
        )

    async def test_retryable_kinds_restrict_retries(self, context, classifier, sleep):
        config = RetryConfig(max_attempts=3, retryable_kinds={ErrorKind.NETWORK})
        operation = AsyncMock(side_effect=Exception("502 Bad Gateway"))

        with pytest.raises(ServerError):
            await execute_with_retry(operation, context, config, classifier, sleep=sleep)

        assert operation.await_count == 1

    async def test_sync_operation(self, context, retry_config, classifier, sleep):
        result = await execute_with_retry(lambda: 7, context, retry_config, classifier, sleep=sleep)
        assert result == 7

    async def test_rate_limit_waits_for_retry_after(
        self, context, retry_config, classifier, sleep, no_jitter
    ):
        operation = AsyncMock(side_effect=[RateLimitError("429", retry_after=8), "ok"])

        await execute_with_retry(
            operation, context, retry_config, classifier, sleep=sleep, random_fn=no_jitter
        )

        assert sleep.delays == [8.0]
