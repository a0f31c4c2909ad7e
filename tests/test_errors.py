"""
Tests for the error taxonomy.
"""
import pytest

from decision_runtime.errors import (
    # Base
    ErrorCode,
    ErrorContext,
    ErrorKind,
    DecisionRuntimeError,
    # Input errors
    ValidationError,
    NotFoundError,
    # Output errors
    SchemaViolation,
    # Downstream errors
    TransientError,
    PermanentError,
    ContextUnavailableError,
    # State errors
    BudgetInsufficientError,
    # Utilities
    classify_error_message,
    error_for_kind,
)


class TestErrorCodes:
    """Test error code enumeration."""

    def test_error_codes_are_prefixed(self):
        """Test that error codes carry the runtime prefix."""
        assert all(code.value.startswith("DR_") for code in ErrorCode)

    def test_error_codes_unique(self):
        """Test that no two codes share a value."""
        values = [code.value for code in ErrorCode]
        assert len(values) == len(set(values))


class TestBaseError:
    """Test the base error class."""

    def test_str_includes_code(self):
        """Test string form."""
        err = DecisionRuntimeError("boom")

        assert str(err) == "[DR_9000] boom"

    def test_to_dict(self):
        """Test serialization with context and cause."""
        cause = KeyError("k")
        err = ValidationError(
            "bad input",
            field_name="account_id",
            context=ErrorContext(tenant_id="t1", extra={"decision_id": "d1"}),
            cause=cause,
        )

        d = err.to_dict()

        assert d["error_type"] == "ValidationError"
        assert d["code"] == "DR_1000"
        assert d["kind"] == "VALIDATION"
        assert d["retryable"] is False
        assert d["context"]["tenant_id"] == "t1"
        assert d["context"]["decision_id"] == "d1"
        assert d["cause"] == "'k'"
        assert err.field_name == "account_id"

    def test_overrides(self):
        """Test per-instance code and retryable overrides."""
        err = TransientError("slow", code=ErrorCode.RATE_LIMIT, retryable=False)

        assert err.code == ErrorCode.RATE_LIMIT
        assert err.retryable is False


class TestHierarchy:
    """Test retryable classification of the hierarchy."""

    def test_transient_is_retryable(self):
        assert TransientError("x").retryable is True

    def test_permanent_is_not(self):
        assert PermanentError("x").retryable is False
        assert ContextUnavailableError("x").retryable is False
        assert isinstance(ContextUnavailableError("x"), PermanentError)

    def test_schema_violation_carries_errors(self):
        err = SchemaViolation(errors=["a: bad"])

        assert err.to_dict()["errors"] == ["a: bad"]
        assert err.retryable is False

    def test_budget_error_cost(self):
        assert BudgetInsufficientError(cost=3).cost == 3

    def test_not_found_code(self):
        assert NotFoundError("x").code == ErrorCode.NOT_FOUND


class TestClassification:
    """Test message classification and kind mapping."""

    @pytest.mark.parametrize("text,kind", [
        ("403 Forbidden", ErrorKind.AUTH),
        ("ThrottlingException: slow down", ErrorKind.RATE_LIMIT),
        ("Read timed out", ErrorKind.TIMEOUT),
        ("ValidationException: malformed input", ErrorKind.VALIDATION),
        ("Service Unavailable", ErrorKind.UNAVAILABLE),
        ("something odd", ErrorKind.UNKNOWN),
        (None, ErrorKind.UNKNOWN),
    ])
    def test_classify(self, text, kind):
        assert classify_error_message(text) == kind

    @pytest.mark.parametrize("kind,error_type,retryable", [
        (ErrorKind.RATE_LIMIT, TransientError, True),
        (ErrorKind.TIMEOUT, TransientError, True),
        (ErrorKind.UNAVAILABLE, TransientError, True),
        (ErrorKind.UNKNOWN, TransientError, True),
        (ErrorKind.AUTH, PermanentError, False),
        (ErrorKind.VALIDATION, PermanentError, False),
    ])
    def test_error_for_kind(self, kind, error_type, retryable):
        err = error_for_kind(kind, "failed")

        assert type(err) is error_type
        assert err.retryable is retryable
        assert err.kind == kind
