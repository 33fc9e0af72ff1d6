"""Unit tests for the error recovery orchestrator.

Tests cover:
- Success and retry paths
- Breaker opening, short-circuiting and recovery
- Fallbacks while a breaker is open
- Cleanup on final failure
- Graceful degradation by operation category
- Runtime configuration updates
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError as PydanticValidationError

from bastion.core.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    ErrorKind,
    ServerError,
)
from bastion.recovery import (
    CircuitBreakerConfig,
    ErrorRecoveryManager,
    OperationCategory,
    RecoveryConfig,
    RecoveryContext,
    RetryConfig,
    with_recovery,
)


@pytest.fixture
def manager(fast_recovery_config, clock, sleep, no_jitter):
    return ErrorRecoveryManager(
        fast_recovery_config, clock=clock, sleep=sleep, random_fn=no_jitter
    )


@pytest.fixture
def single_shot_manager(clock, sleep, no_jitter):
    """No retries, breaker opens after three failures."""
    config = RecoveryConfig(
        retry=RetryConfig(max_attempts=1),
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3, timeout=60),
    )
    return ErrorRecoveryManager(config, clock=clock, sleep=sleep, random_fn=no_jitter)


@pytest.fixture
def context():
    return RecoveryContext("jira", "getSprint")


def failing(message="502 Bad Gateway"):
    return AsyncMock(side_effect=Exception(message))


class TestExecution:
    async def test_success(self, manager, context):
        result = await manager.execute_with_recovery(AsyncMock(return_value={"id": 1}), context)

        assert result == {"id": 1}
        assert manager.get_circuit_breaker_stats()["jira:getSprint"]["success_count"] == 1

    async def test_retry_then_success(self, manager, context, sleep):
        operation = AsyncMock(side_effect=[Exception("503 Service Unavailable"), "ok"])

        assert await manager.execute_with_recovery(operation, context) == "ok"
        assert sleep.delays == [1.0]

    async def test_final_failure_raises_typed_error(self, manager, context):
        operation = failing()

        with pytest.raises(ServerError) as exc_info:
            await manager.execute_with_recovery(operation, context)

        assert operation.await_count == 3
        assert exc_info.value.context["tool"] == "jira"
        assert manager.breakers.get_state(context.key).failure_count == 1
        assert manager.get_error_analytics()["total_errors"] == 1

    async def test_non_retryable_failure(self, manager, context, sleep):
        operation = failing("401 Unauthorized")

        with pytest.raises(AuthenticationError):
            await manager.execute_with_recovery(operation, context)

        assert operation.await_count == 1
        assert sleep.delays == []


class TestCircuitBreaking:
    async def test_breaker_opens_and_short_circuits(self, single_shot_manager, context):
        operation = failing()
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(operation, context)

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await single_shot_manager.execute_with_recovery(operation, context)

        assert operation.await_count == 3
        assert exc_info.value.retryable is False
        assert exc_info.value.context["breaker"]["status"] == "open"

    async def test_short_circuit_is_not_a_breaker_failure(self, single_shot_manager, context):
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(failing(), context)

        with pytest.raises(CircuitBreakerOpenError):
            await single_shot_manager.execute_with_recovery(failing(), context)

        assert single_shot_manager.breakers.get_state(context.key).failure_count == 3
        assert single_shot_manager.get_error_analytics()["errors_by_kind"] == {
            "server": 3,
            "circuit_breaker_open": 1,
        }

    async def test_recovery_after_timeout(self, single_shot_manager, context, clock):
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(failing(), context)

        clock.advance(61)
        operation = AsyncMock(return_value="back")

        assert await single_shot_manager.execute_with_recovery(operation, context) == "back"
        state = single_shot_manager.breakers.get_state(context.key)
        assert state.status == "closed"
        assert state.failure_count == 2

    async def test_fallback_used_while_open(self, single_shot_manager, clock):
        context = RecoveryContext("jira", "getSprint", fallback=lambda: {"cached": True})
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(failing(), context)

        operation = AsyncMock()
        result = await single_shot_manager.execute_with_recovery(operation, context)

        assert result == {"cached": True}
        operation.assert_not_awaited()

    async def test_fallback_not_used_while_closed(self, single_shot_manager):
        fallback = MagicMock(return_value="fallback")
        context = RecoveryContext("jira", "getSprint", fallback=fallback)

        with pytest.raises(ServerError):
            await single_shot_manager.execute_with_recovery(failing(), context)

        fallback.assert_not_called()

    async def test_fallback_disabled(self, single_shot_manager):
        single_shot_manager.update_config(fallback_enabled=False)
        context = RecoveryContext("jira", "getSprint", fallback=lambda: "fallback")
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(failing(), context)

        with pytest.raises(CircuitBreakerOpenError):
            await single_shot_manager.execute_with_recovery(failing(), context)

    async def test_failing_fallback_raises_typed_error(self, single_shot_manager):
        async def fallback():
            raise Exception("401 Unauthorized")

        context = RecoveryContext("jira", "getSprint", fallback=fallback)
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(failing(), context)

        with pytest.raises(AuthenticationError):
            await single_shot_manager.execute_with_recovery(failing(), context)

    async def test_reset_circuit_breaker(self, single_shot_manager, context):
        for _ in range(3):
            with pytest.raises(ServerError):
                await single_shot_manager.execute_with_recovery(failing(), context)

        single_shot_manager.reset_circuit_breaker(context.key)

        assert await single_shot_manager.execute_with_recovery(lambda: "ok", context) == "ok"


class TestCleanup:
    async def test_cleanup_runs_on_final_failure(self, manager):
        cleanup = AsyncMock()
        context = RecoveryContext("github", "listCommits", cleanup=cleanup)

        with pytest.raises(ServerError):
            await manager.execute_with_recovery(failing(), context)

        cleanup.assert_awaited_once()

    async def test_cleanup_not_run_on_success(self, manager):
        cleanup = MagicMock()
        context = RecoveryContext("github", "listCommits", cleanup=cleanup)

        await manager.execute_with_recovery(lambda: "ok", context)

        cleanup.assert_not_called()

    async def test_cleanup_failure_does_not_mask_error(self, manager):
        cleanup = MagicMock(side_effect=RuntimeError("cleanup broke"))
        context = RecoveryContext("github", "listCommits", cleanup=cleanup)

        with pytest.raises(ServerError):
            await manager.execute_with_recovery(failing(), context)

        cleanup.assert_called_once()


class TestDegradation:
    async def test_metrics_payload(self, manager):
        context = RecoveryContext(
            "jira",
            "calculateVelocity",
            partial_result_tolerance=True,
            category=OperationCategory.METRICS,
        )

        result = await manager.execute_with_recovery(failing(), context)

        assert result["error"] is True
        assert result["partial"] is True
        assert result["metrics"] == {}
        assert result["unavailable_metrics"] == ["calculateVelocity"]
        assert result["code"] == "SERVER_ERROR"
        assert result["retryable"] is True

    async def test_data_payload(self, manager):
        context = RecoveryContext(
            "github",
            "listPullRequests",
            partial_result_tolerance=True,
            category=OperationCategory.DATA_RETRIEVAL,
        )

        result = await manager.execute_with_recovery(failing(), context)

        assert result["data"] == []
        assert result["unavailable_data"] == "listPullRequests"

    async def test_report_payload(self, manager):
        context = RecoveryContext(
            "report",
            "generateSprintReport",
            partial_result_tolerance=True,
            category=OperationCategory.REPORT,
        )

        result = await manager.execute_with_recovery(failing(), context)

        assert result["message"] == "Report generation partially failed"
        assert result["degradation_reason"] == "Error in report.generateSprintReport"

    async def test_other_category_raises(self, manager):
        context = RecoveryContext("jira", "getSprint", partial_result_tolerance=True)

        with pytest.raises(ServerError):
            await manager.execute_with_recovery(failing(), context)

    async def test_degradation_requires_tolerance(self, manager):
        context = RecoveryContext("jira", "calculateVelocity", category=OperationCategory.METRICS)

        with pytest.raises(ServerError):
            await manager.execute_with_recovery(failing(), context)

    async def test_degradation_disabled(self, manager):
        manager.update_config(graceful_degradation=False)
        context = RecoveryContext(
            "jira",
            "calculateVelocity",
            partial_result_tolerance=True,
            category=OperationCategory.METRICS,
        )

        with pytest.raises(ServerError):
            await manager.execute_with_recovery(failing(), context)

    async def test_degraded_payload_is_sanitized(self, manager):
        context = RecoveryContext(
            "jira",
            "calculateVelocity",
            partial_result_tolerance=True,
            category=OperationCategory.METRICS,
        )
        operation = failing("502 Bad Gateway token=supersecret")

        result = await manager.execute_with_recovery(operation, context)

        assert "supersecret" not in str(result)


class TestConfiguration:
    def test_update_config_merges_partial_values(self, manager):
        config = manager.update_config(
            retry={"max_attempts": 5}, circuit_breaker={"failure_threshold": 10}
        )

        assert config.retry.max_attempts == 5
        assert config.retry.base_delay == 1.0
        assert manager.breakers.config.failure_threshold == 10

    def test_update_config_accepts_models(self, manager):
        manager.update_config(retry=RetryConfig(max_attempts=2, retryable_kinds={ErrorKind.NETWORK}))

        assert manager.config.retry.max_attempts == 2
        assert manager.classifier.retryable_kinds == {ErrorKind.NETWORK}

    def test_update_config_rejects_invalid_values(self, manager):
        with pytest.raises(PydanticValidationError):
            manager.update_config(retry={"max_attempts": 0})

        assert manager.config.retry.max_attempts == 3


class TestWithRecovery:
    async def test_wrapper_passes_arguments(self, manager):
        async def get_sprint(sprint_id, *, expand=None):
            return {"id": sprint_id, "expand": expand}

        wrapped = with_recovery(manager, get_sprint, RecoveryContext("jira", "getSprint"))

        assert await wrapped(42, expand="issues") == {"id": 42, "expand": "issues"}
        assert wrapped.__name__ == "get_sprint"
