"""
Event handlers and the in-process event consumer.

Each handler takes the container and one event. ``build_router`` binds them
to an ``EventRouter``; ``EventConsumer`` feeds the router from the event bus
and fires due deferred-retry schedules.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

from decision_runtime.admission import AdmissionOutcome, OneTimeSchedule
from decision_runtime.decisions import EvaluationResult, generate_evaluation_id
from decision_runtime.errors import ValidationError
from decision_runtime.events import DecisionEvent, DecisionEventType, EventRouter, EventSubscription
from decision_runtime.ledger import LedgerEntry, LedgerEventType
from decision_runtime.logging import get_logger
from decision_runtime.triggers import TriggerEvaluation, infer_trigger_type

from .container import DecisionContainer

logger = get_logger("decision_api.handlers")

API_EVENT_SOURCE = "decision-api"


async def request_evaluation(
    container: DecisionContainer,
    tenant_id: str,
    account_id: str,
    trigger_type: str,
    *,
    source: str = API_EVENT_SOURCE,
    correlation_id: str | None = None,
    evaluation_id: str | None = None,
) -> DecisionEvent:
    """Record an EVALUATION_REQUESTED ledger entry and publish the request event."""
    evaluation_id = evaluation_id or generate_evaluation_id()
    await container.ledger.append(LedgerEntry(
        event_type=LedgerEventType.EVALUATION_REQUESTED,
        tenant_id=tenant_id,
        account_id=account_id,
        trace_id=correlation_id,
        evaluation_id=evaluation_id,
        data={"trigger_type": trigger_type, "source": source},
    ))
    event = DecisionEvent(
        event_type=DecisionEventType.DECISION_EVALUATION_REQUESTED,
        tenant_id=tenant_id,
        account_id=account_id,
        correlation_id=correlation_id,
        source=source,
        data={
            "account_id": account_id,
            "tenant_id": tenant_id,
            "trigger_type": trigger_type,
            "evaluation_id": evaluation_id,
        },
    )
    await container.event_bus.publish(event)
    return event


async def handle_run_decision(container: DecisionContainer, event: DecisionEvent) -> AdmissionOutcome:
    return await container.pipeline.handle_run_decision(event)


async def handle_run_decision_deferred(container: DecisionContainer, event: DecisionEvent) -> OneTimeSchedule:
    return await container.deferred_retry.handle_deferred(event)


async def handle_evaluation_requested(container: DecisionContainer, event: DecisionEvent) -> EvaluationResult | None:
    # Inline mode runs API requests in the request's background task.
    if event.source == API_EVENT_SOURCE and container.settings.inline_evaluation:
        return None

    data = event.data
    tenant_id = data.get("tenant_id") or event.tenant_id
    account_id = data.get("account_id") or event.account_id
    if not tenant_id or not account_id:
        raise ValidationError("DECISION_EVALUATION_REQUESTED requires tenant_id and account_id")

    evaluation_id = data.get("evaluation_id")
    if evaluation_id is None:
        # Admission-originated requests carry no evaluation id yet.
        evaluation_id = generate_evaluation_id()
        await container.ledger.append(LedgerEntry(
            event_type=LedgerEventType.EVALUATION_REQUESTED,
            tenant_id=tenant_id,
            account_id=account_id,
            trace_id=event.correlation_id,
            evaluation_id=evaluation_id,
            data={
                "trigger_type": data.get("trigger_type"),
                "source": event.source,
                "trigger_event_id": data.get("trigger_event_id"),
            },
        ))

    return await container.evaluator.evaluate(
        tenant_id,
        account_id,
        trigger_type=data.get("trigger_type"),
        evaluation_id=evaluation_id,
        trace_id=event.correlation_id,
    )


async def handle_budget_reset(container: DecisionContainer, event: DecisionEvent) -> None:
    tenant_id = event.data.get("tenant_id") or event.tenant_id
    account_id = event.data.get("account_id") or event.account_id
    if not tenant_id or not account_id:
        raise ValidationError("BUDGET_RESET requires tenant_id and account_id")
    await container.budget.reset_daily_budget(tenant_id, account_id)


async def handle_lifecycle_or_signal_event(
    container: DecisionContainer,
    envelope: Mapping[str, Any],
) -> TriggerEvaluation | None:
    """
    Entry point for upstream lifecycle, signal and periodic events.

    Returns None when the envelope maps to no evaluation trigger type.
    Otherwise runs the trigger evaluator and requests an evaluation when it
    says so.
    """
    trigger_type = infer_trigger_type(envelope)
    if trigger_type is None:
        logger.debug("Event does not map to a trigger type", event_type=envelope.get("event_type"))
        return None

    data = envelope.get("data") or envelope.get("detail") or {}
    tenant_id = envelope.get("tenant_id") or data.get("tenant_id")
    account_id = envelope.get("account_id") or data.get("account_id")
    if not tenant_id or not account_id:
        raise ValidationError("Upstream event requires tenant_id and account_id")

    evaluation = await container.trigger_evaluator.should_trigger_decision(tenant_id, account_id, trigger_type)
    logger.info(
        "Trigger evaluated",
        tenant_id=tenant_id,
        account_id=account_id,
        trigger_type=trigger_type.value,
        should_evaluate=evaluation.should_evaluate,
        reason=evaluation.reason,
    )
    if evaluation.should_evaluate:
        await request_evaluation(
            container,
            tenant_id,
            account_id,
            trigger_type.value,
            source=str(envelope.get("source") or "upstream"),
            correlation_id=envelope.get("correlation_id") or data.get("correlation_id"),
        )
    return evaluation


def build_router(container: DecisionContainer) -> EventRouter:
    router = EventRouter()

    async def _run_decision(event: DecisionEvent) -> AdmissionOutcome:
        return await handle_run_decision(container, event)

    async def _deferred(event: DecisionEvent) -> OneTimeSchedule:
        return await handle_run_decision_deferred(container, event)

    async def _evaluation(event: DecisionEvent) -> EvaluationResult | None:
        return await handle_evaluation_requested(container, event)

    async def _budget_reset(event: DecisionEvent) -> None:
        await handle_budget_reset(container, event)

    router.register(DecisionEventType.RUN_DECISION, _run_decision)
    router.register(DecisionEventType.RUN_DECISION_DEFERRED, _deferred)
    router.register(DecisionEventType.DECISION_EVALUATION_REQUESTED, _evaluation)
    router.register(DecisionEventType.BUDGET_RESET, _budget_reset)
    return router


ROUTED_EVENT_TYPES = {
    DecisionEventType.RUN_DECISION,
    DecisionEventType.RUN_DECISION_DEFERRED,
    DecisionEventType.DECISION_EVALUATION_REQUESTED,
    DecisionEventType.BUDGET_RESET,
}


class EventConsumer:
    """Routes bus events to handlers and polls the scheduler for due retries."""

    def __init__(self, container: DecisionContainer, router: EventRouter | None = None) -> None:
        self._container = container
        self._router = router or build_router(container)
        self._subscription: EventSubscription | None = None
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        if self._subscription is not None:
            return
        bus = self._container.event_bus
        self._subscription = bus.subscribe(event_types=set(ROUTED_EVENT_TYPES))
        self._tasks = [
            asyncio.create_task(self._consume()),
            asyncio.create_task(self._poll_schedules()),
        ]

    async def stop(self) -> None:
        if self._subscription is not None:
            self._container.event_bus.unsubscribe(self._subscription)
            self._subscription = None
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.log_error(e, "Event consumer task failed")
        self._tasks = []

    async def dispatch(self, event: DecisionEvent) -> Any:
        """Route one event. Handler failures are logged and do not stop the consumer."""
        try:
            return await self._router.route(event)
        except Exception as e:
            logger.log_error(
                e,
                "Event handler failed",
                event_type=event.event_type.value,
                event_id=event.event_id,
                tenant_id=event.tenant_id,
                account_id=event.account_id,
            )
            return None

    async def _consume(self) -> None:
        assert self._subscription is not None
        async for event in self._container.event_bus.events(self._subscription):
            await self.dispatch(event)

    async def _poll_schedules(self) -> None:
        interval = self._container.settings.schedule_poll_seconds
        while True:
            try:
                await self.fire_due()
            except Exception as e:
                logger.log_error(e, "Firing due schedules failed")
            await asyncio.sleep(interval)

    async def fire_due(self, now_epoch: int | None = None) -> int:
        return await self._container.deferred_retry.fire_due(self._container.event_bus.publish, now_epoch)


__all__ = [
    "API_EVENT_SOURCE",
    "ROUTED_EVENT_TYPES",
    "request_evaluation",
    "handle_run_decision",
    "handle_run_decision_deferred",
    "handle_evaluation_requested",
    "handle_budget_reset",
    "handle_lifecycle_or_signal_event",
    "build_router",
    "EventConsumer",
]
