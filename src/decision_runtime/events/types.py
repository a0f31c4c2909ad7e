"""
Decision event types.

Field names inside ``data`` are a compatibility surface with downstream
consumers and must not be renamed.

Event flow:
- RUN_DECISION -> RUN_DECISION_DEFERRED | DECISION_EVALUATION_REQUESTED
- DECISION_EVALUATION_REQUESTED -> DECISION_PROPOSED
- approval -> ACTION_APPROVED | ACTION_REJECTED
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class DecisionEventType(str, Enum):
    """Event types produced and consumed by the decision pipeline."""

    RUN_DECISION = "RUN_DECISION"
    RUN_DECISION_DEFERRED = "RUN_DECISION_DEFERRED"
    DECISION_EVALUATION_REQUESTED = "DECISION_EVALUATION_REQUESTED"
    DECISION_PROPOSED = "DECISION_PROPOSED"
    ACTION_APPROVED = "ACTION_APPROVED"
    ACTION_REJECTED = "ACTION_REJECTED"
    BUDGET_RESET = "BUDGET_RESET"


DEFAULT_EVENT_SOURCE = "decision-runtime"


@dataclass
class DecisionEvent:
    """Envelope for every event on the decision bus."""

    event_type: DecisionEventType
    tenant_id: str
    account_id: str
    data: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    source: str = DEFAULT_EVENT_SOURCE
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "source": self.source,
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DecisionEvent:
        payload = dict(data.get("data") or {})
        return cls(
            event_id=data.get("event_id") or str(uuid.uuid4()),
            event_type=DecisionEventType(data["event_type"]),
            source=data.get("source", DEFAULT_EVENT_SOURCE),
            tenant_id=data.get("tenant_id") or payload.get("tenant_id", ""),
            account_id=data.get("account_id") or payload.get("account_id", ""),
            correlation_id=data.get("correlation_id") or payload.get("correlation_id"),
            timestamp=data.get("timestamp", time.time()),
            data=payload,
            schema_version=data.get("schema_version", 1),
        )


__all__ = [
    "DecisionEventType",
    "DEFAULT_EVENT_SOURCE",
    "DecisionEvent",
]
