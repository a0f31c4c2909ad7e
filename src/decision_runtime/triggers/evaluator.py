"""
Coarse trigger eligibility.

The evaluator suppresses whole evaluation cycles: an account that was fully
evaluated within the cooldown window is not evaluated again unless a user
explicitly asks for it.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from ..collaborators import PostureProvider
from ..logging import get_logger
from .types import EvaluationTriggerType, TriggerEvaluation

logger = get_logger("decision_runtime.triggers")

HIGH_SIGNAL_TYPES = frozenset({
    "RENEWAL_WINDOW_ENTERED",
    "SUPPORT_RISK_EMERGING",
    "USAGE_TREND_CHANGE",
})

_EVENT_DRIVEN = frozenset({
    EvaluationTriggerType.LIFECYCLE_TRANSITION,
    EvaluationTriggerType.HIGH_SIGNAL_ARRIVAL,
})


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


class TriggerEvaluator:
    """Decides whether an account is eligible for a new evaluation cycle."""

    def __init__(
        self,
        posture_provider: PostureProvider,
        cooldown_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self._posture = posture_provider
        self._cooldown = cooldown_seconds
        self._clock = clock

    async def should_trigger_decision(
        self,
        tenant_id: str,
        account_id: str,
        trigger_type: EvaluationTriggerType | str,
    ) -> TriggerEvaluation:
        trigger = EvaluationTriggerType(trigger_type)

        if trigger == EvaluationTriggerType.EXPLICIT_USER_REQUEST:
            return TriggerEvaluation(should_evaluate=True, reason="USER_REQUESTED")

        now = self._clock()
        posture = await self._posture.get_posture_state(tenant_id, account_id)
        if posture is not None:
            cooldown_until = posture.evaluated_at_epoch + self._cooldown
            if now < cooldown_until:
                logger.debug(
                    "Evaluation suppressed by cooldown",
                    tenant_id=tenant_id,
                    account_id=account_id,
                    trigger_type=trigger.value,
                )
                return TriggerEvaluation(
                    should_evaluate=False,
                    reason="COOLDOWN_ACTIVE",
                    cooldown_until=_iso(cooldown_until),
                )

        if trigger in _EVENT_DRIVEN:
            return TriggerEvaluation(should_evaluate=True, reason=f"TRIGGERED_BY_{trigger.value}")
        if trigger == EvaluationTriggerType.COOLDOWN_GATED_PERIODIC:
            return TriggerEvaluation(should_evaluate=True, reason="COOLDOWN_EXPIRED")
        return TriggerEvaluation(should_evaluate=False, reason="NO_TRIGGER_CONDITION_MET")


def infer_trigger_type(envelope: Mapping[str, Any]) -> EvaluationTriggerType | None:
    """Map an upstream event envelope onto an evaluation trigger type."""
    event_type = envelope.get("event_type") or envelope.get("detail-type")
    data = envelope.get("data") or envelope.get("detail") or {}

    if event_type == "LIFECYCLE_STATE_CHANGED":
        return EvaluationTriggerType.LIFECYCLE_TRANSITION
    if event_type == "SIGNAL_DETECTED" and data.get("signal_type") in HIGH_SIGNAL_TYPES:
        return EvaluationTriggerType.HIGH_SIGNAL_ARRIVAL
    if envelope.get("source") == "scheduler" and event_type == "PERIODIC_DECISION_EVALUATION":
        return EvaluationTriggerType.COOLDOWN_GATED_PERIODIC
    return None


__all__ = [
    "HIGH_SIGNAL_TYPES",
    "TriggerEvaluator",
    "infer_trigger_type",
]
