"""
Structured logging for the decision runtime.

This module provides:
- Structured JSON logging with consistent fields
- Trace correlation across one handler invocation
- Typed log records for admission and policy outcomes
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

# =============================================================================
# Log Record Types
# =============================================================================


@dataclass
class LogContext:
    """Context information attached to log records."""

    trace_id: str | None = None
    tenant_id: str | None = None
    account_id: str | None = None
    correlation_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            trace_id=kwargs.get("trace_id", self.trace_id),
            tenant_id=kwargs.get("tenant_id", self.tenant_id),
            account_id=kwargs.get("account_id", self.account_id),
            correlation_id=kwargs.get("correlation_id", self.correlation_id),
            operation=kwargs.get("operation", self.operation),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


@dataclass
class AdmissionLog:
    """Log record for one pass through the admission pipeline."""

    outcome: str
    trigger_type: str
    idempotency_key: str
    reason: str | None = None
    defer_until_epoch: int | None = None
    retry_after_seconds: int | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class PolicyLog:
    """Log record for a policy evaluation."""

    decision_id: str
    action_ref: str
    evaluation: str
    policy_risk_tier: str
    reason_codes: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured JSON output and context tracking.

    Example:
        ```python
        logger = get_logger("decision_runtime.admission")

        with logger.trace_context(tenant_id="t1", account_id="a1"):
            logger.info("Cost gate evaluated", result="ALLOW")
        ```
    """

    def __init__(
        self,
        name: str = "decision_runtime",
        level: str | None = None,
        json_output: bool = True,
    ):
        self.name = name
        self.json_output = json_output

        self._logger = logging.getLogger(name)
        if level:
            self._logger.setLevel(getattr(logging, level.upper()))
        self._context: LogContext = LogContext()

    @property
    def context(self) -> LogContext:
        return self._context

    def set_context(self, **kwargs) -> None:
        """Update the current log context."""
        self._context = self._context.with_update(**kwargs)

    @contextmanager
    def trace_context(
        self,
        trace_id: str | None = None,
        **kwargs,
    ) -> Iterator[str]:
        """
        Context manager for trace correlation.

        Args:
            trace_id: Trace ID (auto-generated if not provided)
            **kwargs: Additional context fields

        Yields:
            The trace ID
        """
        trace_id = trace_id or generate_trace_id()
        old_context = self._context

        try:
            self._context = old_context.with_update(trace_id=trace_id, **kwargs)
            yield trace_id
        finally:
            self._context = old_context

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        record_data = {
            "message": message,
            **self._context.to_dict(),
        }

        if event_type:
            record_data["event_type"] = event_type

        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str))
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}")

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    # Typed logging methods

    def log_admission(self, record: AdmissionLog) -> None:
        """Log an admission pipeline outcome."""
        self._log(
            logging.INFO,
            f"Admission {record.outcome} for {record.trigger_type}",
            event_type="admission",
            data=record.to_dict(),
        )

    def log_policy(self, record: PolicyLog) -> None:
        """Log a policy evaluation."""
        self._log(
            logging.INFO,
            f"Policy {record.evaluation} for {record.action_ref}",
            event_type="policy",
            data=record.to_dict(),
        )

    def log_error(
        self,
        error: Exception,
        message: str | None = None,
        **kwargs,
    ) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }

        if hasattr(error, "code"):
            error_data["error_code"] = str(error.code.value)
        if hasattr(error, "kind"):
            error_data["error_kind"] = str(error.kind.value)
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable
        if hasattr(error, "context") and hasattr(error.context, "to_dict"):
            error_data["error_context"] = error.context.to_dict()

        self._log(
            logging.ERROR,
            message or f"Error: {error}",
            event_type="error",
            data=error_data,
        )


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        try:
            message_data = json.loads(record.getMessage())
            if isinstance(message_data, dict):
                log_data.update(message_data)
            else:
                log_data["message"] = record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        return f"{timestamp} {record.levelname:8} {record.name} {record.getMessage()}"


# =============================================================================
# Utilities
# =============================================================================

_loggers: dict[str, StructuredLogger] = {}


def generate_trace_id() -> str:
    """Generate a unique trace ID."""
    return f"trace_{uuid.uuid4().hex[:16]}"


def get_logger(name: str) -> StructuredLogger:
    """Return the structured logger for ``name``, creating it once."""
    logger = _loggers.get(name)
    if logger is None:
        logger = StructuredLogger(name)
        _loggers[name] = logger
    return logger


def setup_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure the ``decision_runtime`` root handler and format."""
    root = logging.getLogger("decision_runtime")
    root.setLevel(getattr(logging, level.upper()))
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if format == "json" else TextFormatter())
    root.addHandler(handler)
    for logger in _loggers.values():
        logger.json_output = format == "json"


__all__ = [
    "LogContext",
    "AdmissionLog",
    "PolicyLog",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "generate_trace_id",
    "get_logger",
    "setup_logging",
]
