"""
Cost gate: a pure, deterministic pre-filter run before the admission lock.

The gate is advisory. It rejects obviously ineligible triggers without
paying for an atomic write; the admission lock may still reject what the
gate allowed.

Evaluation order:
1. Unknown trigger type -> SKIP / UNKNOWN_TRIGGER_TYPE
2. ``budget_remaining <= 0`` -> SKIP / BUDGET_EXHAUSTED
3. Cooldown active since ``recency_last_run_epoch`` -> DEFER / COOLDOWN
4. ``action_saturation_score >= 1`` -> SKIP / MARGINAL_VALUE_LOW
5. Otherwise ALLOW
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..triggers.types import TriggerRegistryEntry


class CostGateResult(str, Enum):
    ALLOW = "ALLOW"
    DEFER = "DEFER"
    SKIP = "SKIP"


class CostGateReason(str, Enum):
    ALLOWED = "ALLOWED"
    UNKNOWN_TRIGGER_TYPE = "UNKNOWN_TRIGGER_TYPE"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    COOLDOWN = "COOLDOWN"
    MARGINAL_VALUE_LOW = "MARGINAL_VALUE_LOW"


@dataclass(frozen=True)
class CostGateInput:
    trigger_type: str
    registry_entry: TriggerRegistryEntry | None
    now_epoch: int
    budget_remaining: float | None = None
    recency_last_run_epoch: int | None = None
    action_saturation_score: float | None = None


@dataclass(frozen=True)
class CostGateDecision:
    result: CostGateResult
    reason: CostGateReason
    explanation: str
    evaluated_at_epoch: int
    defer_until_epoch: int | None = None
    retry_after_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "result": self.result.value,
            "reason": self.reason.value,
            "explanation": self.explanation,
            "evaluated_at_epoch": self.evaluated_at_epoch,
        }
        if self.defer_until_epoch is not None:
            data["defer_until_epoch"] = self.defer_until_epoch
        if self.retry_after_seconds is not None:
            data["retry_after_seconds"] = self.retry_after_seconds
        return data


def evaluate_cost_gate(gate_input: CostGateInput) -> CostGateDecision:
    """Evaluate the cost gate. No I/O and no clock access."""
    now = gate_input.now_epoch
    entry = gate_input.registry_entry

    if entry is None:
        return CostGateDecision(
            result=CostGateResult.SKIP,
            reason=CostGateReason.UNKNOWN_TRIGGER_TYPE,
            explanation=f"Unknown trigger type: {gate_input.trigger_type}",
            evaluated_at_epoch=now,
        )

    if gate_input.budget_remaining is not None and gate_input.budget_remaining <= 0:
        return CostGateDecision(
            result=CostGateResult.SKIP,
            reason=CostGateReason.BUDGET_EXHAUSTED,
            explanation="Budget exhausted for this account",
            evaluated_at_epoch=now,
        )

    recency = gate_input.recency_last_run_epoch
    if recency is not None and entry.cooldown_seconds > 0:
        elapsed = now - recency
        if elapsed < entry.cooldown_seconds:
            retry_after = entry.cooldown_seconds - elapsed
            return CostGateDecision(
                result=CostGateResult.DEFER,
                reason=CostGateReason.COOLDOWN,
                explanation=f"Cooldown active: {retry_after}s remaining",
                evaluated_at_epoch=now,
                defer_until_epoch=recency + entry.cooldown_seconds,
                retry_after_seconds=retry_after,
            )

    score = gate_input.action_saturation_score
    if score is not None and score >= 1:
        return CostGateDecision(
            result=CostGateResult.SKIP,
            reason=CostGateReason.MARGINAL_VALUE_LOW,
            explanation="Action saturation too high; marginal value low",
            evaluated_at_epoch=now,
        )

    return CostGateDecision(
        result=CostGateResult.ALLOW,
        reason=CostGateReason.ALLOWED,
        explanation="All checks passed",
        evaluated_at_epoch=now,
    )


__all__ = [
    "CostGateResult",
    "CostGateReason",
    "CostGateInput",
    "CostGateDecision",
    "evaluate_cost_gate",
]
