"""Unit tests for degraded payload shapes."""

from datetime import datetime

from bastion.core.exceptions import ServerError, TimeoutError
from bastion.recovery import OperationCategory, RecoveryContext, degrade


def context(category):
    return RecoveryContext("jira", "calculateVelocity", category=category)


class TestDegrade:
    def test_common_fields(self):
        payload = degrade(ServerError("502 Bad Gateway"), context(OperationCategory.REPORT))

        assert payload["error"] is True
        assert payload["partial"] is True
        assert payload["code"] == "SERVER_ERROR"
        assert payload["retryable"] is True
        assert payload["details"] == "502 Bad Gateway"
        assert payload["degradation_reason"] == "Error in jira.calculateVelocity"
        assert datetime.fromisoformat(payload["timestamp"]).tzinfo is not None

    def test_report_has_no_extra_fields(self):
        payload = degrade(TimeoutError("slow"), context(OperationCategory.REPORT))

        assert "metrics" not in payload
        assert "data" not in payload

    def test_metrics_shape(self):
        payload = degrade(TimeoutError("slow"), context(OperationCategory.METRICS))

        assert payload["message"] == "Metrics calculation partially failed"
        assert payload["metrics"] == {}
        assert payload["unavailable_metrics"] == ["calculateVelocity"]

    def test_data_shape(self):
        payload = degrade(TimeoutError("slow"), context(OperationCategory.DATA_RETRIEVAL))

        assert payload["message"] == "Data retrieval partially failed"
        assert payload["data"] == []
        assert payload["unavailable_data"] == "calculateVelocity"

    def test_other_has_no_payload(self):
        assert degrade(TimeoutError("slow"), context(OperationCategory.OTHER)) is None

    def test_details_are_sanitized(self):
        payload = degrade(
            ServerError("502 api_key=abcdef"), context(OperationCategory.METRICS)
        )

        assert "abcdef" not in payload["details"]
