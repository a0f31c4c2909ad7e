"""
Ledger types for decision audit and evaluation status.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class LedgerEventType(str, Enum):
    """Types of ledger entries."""
    EVALUATION_REQUESTED = "EVALUATION_REQUESTED"
    EVALUATION_SKIPPED = "EVALUATION_SKIPPED"
    EVALUATION_FAILED = "EVALUATION_FAILED"
    DECISION_PROPOSED = "DECISION_PROPOSED"
    POLICY_EVALUATED = "POLICY_EVALUATED"
    ACTION_APPROVED = "ACTION_APPROVED"
    ACTION_REJECTED = "ACTION_REJECTED"
    ACTION_EDITED = "ACTION_EDITED"


class EvaluationState(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass
class LedgerEntry:
    """An append-only audit record.

    Entries are written after the fact and are never read to gate a decision.
    """
    event_type: LedgerEventType
    tenant_id: str
    account_id: str
    data: dict[str, Any] = field(default_factory=dict)
    trace_id: str | None = None
    evaluation_id: str | None = None
    decision_id: str | None = None
    entry_id: str = field(default_factory=lambda: f"ledger_{uuid.uuid4().hex}")
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "event_type": self.event_type.value,
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "trace_id": self.trace_id,
            "evaluation_id": self.evaluation_id,
            "decision_id": self.decision_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LedgerEntry:
        return cls(
            entry_id=data["entry_id"],
            event_type=LedgerEventType(data["event_type"]),
            tenant_id=data["tenant_id"],
            account_id=data["account_id"],
            trace_id=data.get("trace_id"),
            evaluation_id=data.get("evaluation_id"),
            decision_id=data.get("decision_id"),
            timestamp=float(data.get("timestamp", time.time())),
            data=dict(data.get("data") or {}),
        )


@dataclass(frozen=True)
class EvaluationStatus:
    evaluation_id: str
    status: EvaluationState
    decision_id: str | None = None
    reason: str | None = None
    updated_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluation_id": self.evaluation_id,
            "status": self.status.value,
            "decision_id": self.decision_id,
            "reason": self.reason,
            "updated_at": self.updated_at,
        }


__all__ = [
    "LedgerEventType",
    "EvaluationState",
    "LedgerEntry",
    "EvaluationStatus",
]
