"""Unit tests for the Bastion exception hierarchy."""

import pytest

from bastion.core.exceptions import (
    ERROR_TYPES,
    AuthenticationError,
    BastionError,
    CacheError,
    CircuitBreakerOpenError,
    ConfigurationError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    SecurityError,
    UnknownError,
    ValidationError,
    default_retryable_kinds,
)


class TestErrorTypes:
    """Tests for error kinds, codes and retryability defaults."""

    def test_every_kind_has_an_error_class(self):
        assert set(ERROR_TYPES) == set(ErrorKind)
        for kind, cls in ERROR_TYPES.items():
            assert cls.kind is kind

    @pytest.mark.parametrize(
        "cls,retryable",
        [
            (NetworkError, True),
            (AuthenticationError, False),
            (RateLimitError, True),
            (ValidationError, False),
            (CacheError, True),
            (ConfigurationError, False),
            (SecurityError, False),
            (CircuitBreakerOpenError, False),
            (UnknownError, True),
        ],
    )
    def test_retryability_defaults(self, cls, retryable):
        assert cls("boom").retryable is retryable

    def test_retryable_override(self):
        error = NetworkError("flaky", retryable=False)
        assert error.retryable is False
        # Class default is untouched
        assert NetworkError.retryable is True

    def test_default_retryable_kinds(self):
        kinds = default_retryable_kinds()
        assert ErrorKind.NETWORK in kinds
        assert ErrorKind.TIMEOUT in kinds
        assert ErrorKind.AUTHENTICATION not in kinds
        assert ErrorKind.CIRCUIT_BREAKER_OPEN not in kinds

    def test_all_errors_are_bastion_errors(self):
        for cls in ERROR_TYPES.values():
            assert issubclass(cls, BastionError)


class TestSerialization:
    """Tests for user-facing and log representations."""

    def test_to_dict_uses_user_message(self):
        error = AuthenticationError("401 from https://jira.example.com token=abc999")
        data = error.to_dict()

        assert data["code"] == "AUTHENTICATION_ERROR"
        assert data["retryable"] is False
        assert "abc999" not in data["message"]
        assert "API tokens" in data["message"]

    def test_to_log_dict(self):
        error = ValidationError("bad sprint id", context={"tool": "jira"})
        data = error.to_log_dict()

        assert data["error_type"] == "ValidationError"
        assert data["kind"] == "validation"
        assert data["message"] == "bad sprint id"
        assert data["context"] == {"tool": "jira"}

    def test_rate_limit_error_carries_retry_after(self):
        error = RateLimitError("slow down", retry_after=12)

        assert error.retry_after == 12
        assert error.to_dict()["retry_after"] == 12
        assert error.to_log_dict()["retry_after"] == 12
        assert "12 seconds" in error.user_message

    def test_custom_user_message(self):
        error = CacheError("redis down", user_message="Running without cache")
        assert error.to_dict()["message"] == "Running without cache"
