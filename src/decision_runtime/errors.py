"""
Error taxonomy for the decision runtime.

This module provides:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured error kinds returned by collaborators (model endpoint, stores)
- A last-resort substring classifier for unstructured upstream text

Duplicate deliveries and admission denials are NOT errors here: they are
returned as values (``ReserveResult``, ``CostGateDecision``,
``AdmissionResult``) and never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the decision runtime."""

    # Input errors (1xxx)
    VALIDATION_ERROR = "DR_1000"
    MISSING_FIELD = "DR_1001"
    IMMUTABLE_FIELD = "DR_1002"
    NOT_FOUND = "DR_1003"

    # Generative output errors (2xxx)
    SCHEMA_VIOLATION = "DR_2000"
    UNPARSEABLE_OUTPUT = "DR_2001"
    INVARIANT_VIOLATION = "DR_2002"

    # Downstream errors (3xxx)
    TRANSIENT = "DR_3000"
    RATE_LIMIT = "DR_3001"
    TIMEOUT = "DR_3002"
    UNAVAILABLE = "DR_3003"

    # Permanent errors (4xxx)
    PERMANENT = "DR_4000"
    AUTHENTICATION = "DR_4001"
    CONTEXT_UNAVAILABLE = "DR_4002"
    CONFIG_ERROR = "DR_4003"

    # State errors (5xxx)
    BUDGET_INSUFFICIENT = "DR_5000"
    PROVENANCE_VIOLATION = "DR_5001"
    ALREADY_EXISTS = "DR_5002"

    INTERNAL_ERROR = "DR_9000"


class ErrorKind(str, Enum):
    """Structured failure kind reported by a collaborator."""

    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    VALIDATION = "VALIDATION"
    TIMEOUT = "TIMEOUT"
    UNAVAILABLE = "UNAVAILABLE"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    tenant_id: str | None = None
    account_id: str | None = None
    trace_id: str | None = None
    correlation_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "trace_id": self.trace_id,
            "correlation_id": self.correlation_id,
            "operation": self.operation,
            **self.extra,
        }


class DecisionRuntimeError(Exception):
    """
    Base exception for all decision runtime errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the invocation platform may retry
        kind: Structured failure kind, when known
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        kind: ErrorKind | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        if kind is not None:
            self.kind = kind
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Input Errors
# =============================================================================


class ValidationError(DecisionRuntimeError):
    """Malformed trigger or approval input. Rejected without side effects."""

    code = ErrorCode.VALIDATION_ERROR
    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field_name: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.field_name = field_name


class NotFoundError(DecisionRuntimeError):
    """A referenced decision, action or intent does not exist."""

    code = ErrorCode.NOT_FOUND


# =============================================================================
# Generative Output Errors
# =============================================================================


class SchemaViolation(DecisionRuntimeError):
    """Generative output failed parsing or invariant validation. Aborts the cycle."""

    code = ErrorCode.SCHEMA_VIOLATION
    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str = "Proposal failed schema validation",
        *,
        errors: list[str] | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = list(self.errors)
        return data


# =============================================================================
# Downstream Errors
# =============================================================================


class TransientError(DecisionRuntimeError):
    """Downstream or network failure. Surfaced to the platform's retry policy."""

    code = ErrorCode.TRANSIENT
    retryable = True
    kind = ErrorKind.UNAVAILABLE


class PermanentError(DecisionRuntimeError):
    """Auth or configuration failure. Never retried."""

    code = ErrorCode.PERMANENT
    retryable = False
    kind = ErrorKind.AUTH


class ContextUnavailableError(PermanentError):
    """Posture read-model or tenant configuration is missing."""

    code = ErrorCode.CONTEXT_UNAVAILABLE
    kind = ErrorKind.UNKNOWN


# =============================================================================
# State Errors
# =============================================================================


class BudgetInsufficientError(DecisionRuntimeError):
    """Conditional budget decrement failed after a successful budget check."""

    code = ErrorCode.BUDGET_INSUFFICIENT

    def __init__(
        self,
        message: str = "Insufficient budget",
        *,
        cost: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.cost = cost


class ProvenanceError(DecisionRuntimeError):
    """An action intent's provenance fields disagree."""

    code = ErrorCode.PROVENANCE_VIOLATION


class AlreadyExistsError(DecisionRuntimeError):
    """A create-only record already exists."""

    code = ErrorCode.ALREADY_EXISTS


# =============================================================================
# Classification
# =============================================================================

# Ordered: the first matching group wins.
_KIND_MARKERS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.AUTH, ("unauthorized", "forbidden", "access denied", "accessdenied", "invalid api key", "authentication")),
    (ErrorKind.RATE_LIMIT, ("throttl", "rate limit", "rate_limit", "too many requests", "429")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out", "deadline exceeded")),
    (ErrorKind.VALIDATION, ("validation", "invalid request", "malformed", "bad request")),
    (ErrorKind.UNAVAILABLE, ("unavailable", "connection reset", "connection refused", "503", "502")),
)


def classify_error_message(text: str | None) -> ErrorKind:
    """
    Classify unstructured upstream error text.

    Only used when the collaborator did not report a structured kind.
    """
    if not text:
        return ErrorKind.UNKNOWN
    lowered = text.lower()
    for kind, markers in _KIND_MARKERS:
        if any(marker in lowered for marker in markers):
            return kind
    return ErrorKind.UNKNOWN


def error_for_kind(
    kind: ErrorKind,
    message: str,
    *,
    context: ErrorContext | None = None,
    cause: Exception | None = None,
) -> DecisionRuntimeError:
    """Map a structured error kind onto the runtime error hierarchy."""
    if kind == ErrorKind.RATE_LIMIT:
        return TransientError(message, code=ErrorCode.RATE_LIMIT, kind=kind, context=context, cause=cause)
    if kind == ErrorKind.TIMEOUT:
        return TransientError(message, code=ErrorCode.TIMEOUT, kind=kind, context=context, cause=cause)
    if kind == ErrorKind.UNAVAILABLE:
        return TransientError(message, code=ErrorCode.UNAVAILABLE, kind=kind, context=context, cause=cause)
    if kind == ErrorKind.AUTH:
        return PermanentError(message, code=ErrorCode.AUTHENTICATION, kind=kind, context=context, cause=cause)
    if kind == ErrorKind.VALIDATION:
        return PermanentError(message, code=ErrorCode.VALIDATION_ERROR, kind=kind, context=context, cause=cause)
    return TransientError(message, kind=ErrorKind.UNKNOWN, context=context, cause=cause)


__all__ = [
    "ErrorCode",
    "ErrorKind",
    "ErrorContext",
    "DecisionRuntimeError",
    "ValidationError",
    "NotFoundError",
    "SchemaViolation",
    "TransientError",
    "PermanentError",
    "ContextUnavailableError",
    "BudgetInsufficientError",
    "ProvenanceError",
    "AlreadyExistsError",
    "classify_error_message",
    "error_for_kind",
]
