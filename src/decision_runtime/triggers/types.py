"""
Trigger types and the static trigger registry.

Two vocabularies exist:
- ``RunTriggerType``: categories that enter the admission pipeline through a
  RUN_DECISION event. Each has a registry entry (debounce, cooldown, hourly cap).
- ``EvaluationTriggerType``: coarse categories checked by the trigger
  evaluator before an evaluation cycle is requested at all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class RunTriggerType(str, Enum):
    """Trigger categories admitted through RUN_DECISION."""
    SIGNAL_ARRIVED = "SIGNAL_ARRIVED"
    LIFECYCLE_STATE_CHANGE = "LIFECYCLE_STATE_CHANGE"
    POSTURE_CHANGE = "POSTURE_CHANGE"
    TIME_RITUAL_DAILY_BRIEF = "TIME_RITUAL_DAILY_BRIEF"
    TIME_RITUAL_WEEKLY_REVIEW = "TIME_RITUAL_WEEKLY_REVIEW"
    TIME_RITUAL_RENEWAL_RUNWAY = "TIME_RITUAL_RENEWAL_RUNWAY"


class EvaluationTriggerType(str, Enum):
    """Coarse trigger categories for evaluation eligibility."""
    LIFECYCLE_TRANSITION = "LIFECYCLE_TRANSITION"
    HIGH_SIGNAL_ARRIVAL = "HIGH_SIGNAL_ARRIVAL"
    EXPLICIT_USER_REQUEST = "EXPLICIT_USER_REQUEST"
    COOLDOWN_GATED_PERIODIC = "COOLDOWN_GATED_PERIODIC"


@dataclass(frozen=True)
class TriggerRegistryEntry:
    """Static per-trigger configuration. All values are in seconds."""
    debounce_seconds: int
    cooldown_seconds: int
    max_per_account_per_hour: int

    def __post_init__(self):
        if self.debounce_seconds < 0 or self.cooldown_seconds < 0:
            raise ValueError("debounce_seconds and cooldown_seconds cannot be negative")
        if self.max_per_account_per_hour < 0:
            raise ValueError("max_per_account_per_hour cannot be negative")

    def to_dict(self) -> dict[str, int]:
        return {
            "debounce_seconds": self.debounce_seconds,
            "cooldown_seconds": self.cooldown_seconds,
            "max_per_account_per_hour": self.max_per_account_per_hour,
        }


DEFAULT_TRIGGER_REGISTRY: Mapping[str, TriggerRegistryEntry] = {
    RunTriggerType.SIGNAL_ARRIVED.value: TriggerRegistryEntry(60, 300, 12),
    RunTriggerType.LIFECYCLE_STATE_CHANGE.value: TriggerRegistryEntry(120, 600, 6),
    RunTriggerType.POSTURE_CHANGE.value: TriggerRegistryEntry(120, 600, 6),
    RunTriggerType.TIME_RITUAL_DAILY_BRIEF.value: TriggerRegistryEntry(0, 86400, 1),
    RunTriggerType.TIME_RITUAL_WEEKLY_REVIEW.value: TriggerRegistryEntry(0, 604800, 1),
    RunTriggerType.TIME_RITUAL_RENEWAL_RUNWAY.value: TriggerRegistryEntry(0, 86400, 2),
}


@dataclass
class TriggerRegistry:
    """Lookup over trigger registry entries with optional overrides."""
    overrides: dict[str, TriggerRegistryEntry] = field(default_factory=dict)

    def get(self, trigger_type: str) -> TriggerRegistryEntry | None:
        if trigger_type in self.overrides:
            return self.overrides[trigger_type]
        return DEFAULT_TRIGGER_REGISTRY.get(trigger_type)

    def __contains__(self, trigger_type: str) -> bool:
        return self.get(trigger_type) is not None


@dataclass
class TriggerEvent:
    """A RUN_DECISION trigger. Logged, never persisted."""
    tenant_id: str
    account_id: str
    trigger_type: str
    idempotency_key: str
    correlation_id: str | None = None
    scheduled_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "trigger_type": self.trigger_type,
            "idempotency_key": self.idempotency_key,
            "correlation_id": self.correlation_id,
            "scheduled_at": self.scheduled_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TriggerEvent:
        return cls(
            tenant_id=data.get("tenant_id") or "",
            account_id=data.get("account_id") or "",
            trigger_type=data.get("trigger_type") or "",
            idempotency_key=data.get("idempotency_key") or "",
            correlation_id=data.get("correlation_id"),
            scheduled_at=data.get("scheduled_at"),
        )


@dataclass(frozen=True)
class TriggerEvaluation:
    """Outcome of the coarse eligibility check."""
    should_evaluate: bool
    reason: str
    cooldown_until: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"should_evaluate": self.should_evaluate, "reason": self.reason}
        if self.cooldown_until is not None:
            data["cooldown_until"] = self.cooldown_until
        return data


__all__ = [
    "RunTriggerType",
    "EvaluationTriggerType",
    "TriggerRegistryEntry",
    "DEFAULT_TRIGGER_REGISTRY",
    "TriggerRegistry",
    "TriggerEvent",
    "TriggerEvaluation",
]
