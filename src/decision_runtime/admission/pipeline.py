"""
Admission pipeline for RUN_DECISION triggers.

Trigger -> idempotency reserve -> run state read -> cost gate
-> [ALLOW] admission lock -> [acquired] DECISION_EVALUATION_REQUESTED

Any DEFER (from the cost gate or from a lost lock race) is published as
RUN_DECISION_DEFERRED for the deferred-retry scheduler. Duplicates and
denials are returned as outcomes, never raised.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..collaborators import SaturationProvider
from ..config import AdmissionConfig
from ..decisions.budget import BudgetService
from ..errors import ValidationError
from ..events.bus import EventBus
from ..events.types import DecisionEvent, DecisionEventType
from ..logging import AdmissionLog, get_logger
from ..triggers.types import TriggerEvent, TriggerRegistry
from .cost_gate import CostGateDecision, CostGateInput, CostGateResult, evaluate_cost_gate
from .idempotency import IdempotencyStore
from .run_state import RunStateStore

logger = get_logger("decision_runtime.admission")


class AdmissionStatus(str, Enum):
    DUPLICATE = "DUPLICATE"
    SKIPPED = "SKIPPED"
    DEFERRED = "DEFERRED"
    ADMITTED = "ADMITTED"


@dataclass(frozen=True)
class AdmissionOutcome:
    status: AdmissionStatus
    reason: str | None = None
    gate: CostGateDecision | None = None
    event: DecisionEvent | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "gate": self.gate.to_dict() if self.gate else None,
            "event_id": self.event.event_id if self.event else None,
        }


def parse_trigger(event: DecisionEvent) -> TriggerEvent:
    """Read and validate the trigger carried by a RUN_DECISION event."""
    trigger = TriggerEvent.from_dict({
        "tenant_id": event.tenant_id,
        "account_id": event.account_id,
        "correlation_id": event.correlation_id,
        **{k: v for k, v in event.data.items() if v not in (None, "")},
    })
    for name in ("tenant_id", "account_id", "trigger_type", "idempotency_key"):
        if not getattr(trigger, name):
            raise ValidationError(f"RUN_DECISION missing required field: {name}", field_name=name)
    return trigger


class AdmissionPipeline:
    """Handles RUN_DECISION events up to evaluation request or deferral."""

    def __init__(
        self,
        idempotency: IdempotencyStore,
        run_state: RunStateStore,
        event_bus: EventBus,
        registry: TriggerRegistry | None = None,
        budget: BudgetService | None = None,
        saturation: SaturationProvider | None = None,
        config: AdmissionConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._idempotency = idempotency
        self._run_state = run_state
        self._bus = event_bus
        self._registry = registry or TriggerRegistry()
        self._budget = budget
        self._saturation = saturation
        self._config = config or AdmissionConfig()
        self._clock = clock

    async def handle_run_decision(self, event: DecisionEvent) -> AdmissionOutcome:
        trigger = parse_trigger(event)

        with logger.trace_context(
            tenant_id=trigger.tenant_id,
            account_id=trigger.account_id,
            correlation_id=trigger.correlation_id,
            operation="admission",
        ):
            reserved = await self._idempotency.reserve(trigger.idempotency_key)
            if not reserved.reserved:
                return self._finish(trigger, AdmissionOutcome(AdmissionStatus.DUPLICATE, reason="ALREADY_EXISTS"))

            entry = self._registry.get(trigger.trigger_type)
            state = None
            if entry is not None:
                state = await self._run_state.get_state(trigger.tenant_id, trigger.account_id, trigger.trigger_type)

            gate = evaluate_cost_gate(CostGateInput(
                trigger_type=trigger.trigger_type,
                registry_entry=entry,
                now_epoch=int(self._clock()),
                budget_remaining=await self._budget_remaining(trigger) if entry is not None else None,
                recency_last_run_epoch=state.last_allowed_at_epoch if state else None,
                action_saturation_score=await self._saturation_score(trigger) if entry is not None else None,
            ))

            if gate.result == CostGateResult.SKIP:
                return self._finish(trigger, AdmissionOutcome(AdmissionStatus.SKIPPED, gate.reason.value, gate))

            if gate.result == CostGateResult.DEFER:
                deferred = await self._publish_deferred(
                    trigger,
                    defer_until_epoch=gate.defer_until_epoch,
                    retry_after_seconds=gate.retry_after_seconds,
                )
                return self._finish(trigger, AdmissionOutcome(AdmissionStatus.DEFERRED, gate.reason.value, gate, deferred))

            assert entry is not None
            lock = await self._run_state.try_acquire_admission_lock(
                trigger.tenant_id,
                trigger.account_id,
                trigger.trigger_type,
                entry,
            )
            if not lock.acquired:
                cooldown = entry.cooldown_seconds or self._config.lock_fallback_cooldown_seconds
                deferred = await self._publish_deferred(
                    trigger,
                    defer_until_epoch=int(self._clock()) + cooldown,
                    retry_after_seconds=cooldown,
                )
                return self._finish(trigger, AdmissionOutcome(AdmissionStatus.DEFERRED, lock.reason, gate, deferred))

            requested = DecisionEvent(
                event_type=DecisionEventType.DECISION_EVALUATION_REQUESTED,
                tenant_id=trigger.tenant_id,
                account_id=trigger.account_id,
                correlation_id=trigger.correlation_id,
                data={
                    "account_id": trigger.account_id,
                    "tenant_id": trigger.tenant_id,
                    "trigger_type": trigger.trigger_type,
                    "trigger_event_id": event.event_id,
                },
            )
            await self._bus.publish(requested)
            return self._finish(trigger, AdmissionOutcome(AdmissionStatus.ADMITTED, gate.reason.value, gate, requested))

    async def _budget_remaining(self, trigger: TriggerEvent) -> float | None:
        if self._budget is None:
            return None
        check = await self._budget.can_evaluate_decision(trigger.tenant_id, trigger.account_id)
        if not check.allowed:
            return 0
        remaining = check.budget_remaining
        return min(remaining.daily_decisions_remaining, remaining.monthly_cost_remaining)

    async def _saturation_score(self, trigger: TriggerEvent) -> float | None:
        if self._saturation is None:
            return None
        return await self._saturation.get_saturation_score(trigger.tenant_id, trigger.account_id)

    async def _publish_deferred(
        self,
        trigger: TriggerEvent,
        *,
        defer_until_epoch: int | None,
        retry_after_seconds: int | None,
    ) -> DecisionEvent:
        deferred = DecisionEvent(
            event_type=DecisionEventType.RUN_DECISION_DEFERRED,
            tenant_id=trigger.tenant_id,
            account_id=trigger.account_id,
            correlation_id=trigger.correlation_id,
            data={
                **trigger.to_dict(),
                "defer_until_epoch": defer_until_epoch,
                "retry_after_seconds": retry_after_seconds,
                "original_idempotency_key": trigger.idempotency_key,
            },
        )
        await self._bus.publish(deferred)
        return deferred

    def _finish(self, trigger: TriggerEvent, outcome: AdmissionOutcome) -> AdmissionOutcome:
        logger.log_admission(AdmissionLog(
            outcome=outcome.status.value,
            trigger_type=trigger.trigger_type,
            idempotency_key=trigger.idempotency_key,
            reason=outcome.reason,
            defer_until_epoch=outcome.event.data.get("defer_until_epoch") if outcome.event else None,
            retry_after_seconds=outcome.event.data.get("retry_after_seconds") if outcome.event else None,
        ))
        return outcome


__all__ = [
    "AdmissionStatus",
    "AdmissionOutcome",
    "parse_trigger",
    "AdmissionPipeline",
]
