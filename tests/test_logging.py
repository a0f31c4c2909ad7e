"""
Tests for the structured logging module.
"""

import json
import logging

from decision_runtime.errors import ErrorContext, ValidationError
from decision_runtime.logging import (
    AdmissionLog,
    JSONFormatter,
    LogContext,
    PolicyLog,
    StructuredLogger,
    generate_trace_id,
    get_logger,
)


def _payloads(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records]


class TestLogContext:
    """Test LogContext dataclass."""

    def test_to_dict(self):
        """Test converting to dict drops empty fields."""
        ctx = LogContext(trace_id="t1", tenant_id="tenant-1", extra={"custom": "value"})

        d = ctx.to_dict()

        assert d == {"trace_id": "t1", "tenant_id": "tenant-1", "custom": "value"}

    def test_with_update(self):
        """Test creating updated context."""
        ctx = LogContext(trace_id="t1", tenant_id="tenant-1")
        updated = ctx.with_update(account_id="acct-1", extra={"new": "value"})

        assert updated.trace_id == "t1"
        assert updated.account_id == "acct-1"
        assert "new" in updated.extra
        assert ctx.account_id is None


class TestLogRecords:
    """Test typed log records."""

    def test_admission_log_drops_none(self):
        """Test that unset fields are omitted."""
        record = AdmissionLog(outcome="ADMITTED", trigger_type="SIGNAL_ARRIVED", idempotency_key="k")

        d = record.to_dict()

        assert d["outcome"] == "ADMITTED"
        assert "defer_until_epoch" not in d
        assert "timestamp" in d

    def test_policy_log(self):
        """Test policy log record."""
        record = PolicyLog("d1", "ref1", "ALLOWED", "LOW", ["LOW_RISK_CONFIDENCE_THRESHOLD_MET"])

        assert record.to_dict()["reason_codes"] == ["LOW_RISK_CONFIDENCE_THRESHOLD_MET"]


class TestStructuredLogger:
    """Test StructuredLogger class."""

    def test_json_message_with_fields(self, caplog):
        """Test that fields land in the JSON payload."""
        logger = StructuredLogger("decision_runtime.test")

        with caplog.at_level(logging.INFO, logger="decision_runtime.test"):
            logger.info("Budget consumed", cost=1)

        [payload] = _payloads(caplog)
        assert payload == {"message": "Budget consumed", "cost": 1}

    def test_trace_context(self, caplog):
        """Test trace context is attached and then restored."""
        logger = StructuredLogger("decision_runtime.test")

        with caplog.at_level(logging.INFO, logger="decision_runtime.test"):
            with logger.trace_context("trace_abc", tenant_id="tenant-1") as trace_id:
                logger.info("inside")
            logger.info("outside")

        inside, outside = _payloads(caplog)
        assert trace_id == "trace_abc"
        assert inside["trace_id"] == "trace_abc"
        assert inside["tenant_id"] == "tenant-1"
        assert "trace_id" not in outside

    def test_log_admission(self, caplog):
        """Test typed admission logging."""
        logger = StructuredLogger("decision_runtime.test")

        with caplog.at_level(logging.INFO, logger="decision_runtime.test"):
            logger.log_admission(AdmissionLog("DEFERRED", "SIGNAL_ARRIVED", "k", reason="COOLDOWN"))

        [payload] = _payloads(caplog)
        assert payload["event_type"] == "admission"
        assert payload["reason"] == "COOLDOWN"

    def test_log_error(self, caplog):
        """Test error logging carries the runtime error fields."""
        logger = StructuredLogger("decision_runtime.test")
        error = ValidationError("bad", context=ErrorContext(tenant_id="tenant-1"))

        with caplog.at_level(logging.ERROR, logger="decision_runtime.test"):
            logger.log_error(error, "Approval failed", action_ref="ref1")

        [payload] = _payloads(caplog)
        assert payload["error_code"] == "DR_1000"
        assert payload["error_kind"] == "VALIDATION"
        assert payload["retryable"] is False
        assert payload["error_context"]["tenant_id"] == "tenant-1"
        assert payload["action_ref"] == "ref1"

    def test_text_output(self, caplog):
        """Test the key=value text mode."""
        logger = StructuredLogger("decision_runtime.test", json_output=False)

        with caplog.at_level(logging.INFO, logger="decision_runtime.test"):
            logger.info("Plain", cost=2)

        assert caplog.records[0].getMessage() == "Plain cost=2"


class TestUtilities:
    """Test logging utilities."""

    def test_generate_trace_id(self):
        """Test trace ID generation."""
        a, b = generate_trace_id(), generate_trace_id()

        assert a.startswith("trace_")
        assert len(a) == len("trace_") + 16
        assert a != b

    def test_get_logger_is_cached(self):
        """Test one logger per name."""
        assert get_logger("decision_runtime.cached") is get_logger("decision_runtime.cached")

    def test_json_formatter_merges_payload(self):
        """Test the formatter flattens JSON messages."""
        record = logging.LogRecord("decision_runtime.x", logging.INFO, __file__, 1, '{"message": "hi", "n": 1}', None, None)

        out = json.loads(JSONFormatter().format(record))

        assert out["message"] == "hi"
        assert out["n"] == 1
        assert out["level"] == "INFO"
