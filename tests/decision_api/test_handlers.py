from __future__ import annotations

import asyncio

import pytest

from decision_api.handlers import (
    EventConsumer,
    build_router,
    handle_evaluation_requested,
    handle_lifecycle_or_signal_event,
    request_evaluation,
)
from decision_runtime.admission import AdmissionStatus
from decision_runtime.collaborators import InMemoryReadModels
from decision_runtime.decisions import EvaluationOutcome
from decision_runtime.errors import ValidationError
from decision_runtime.events import DecisionEvent, DecisionEventType, EventRouter
from decision_runtime.ledger import EvaluationState, LedgerEventType

from tests._decision_testkit import (
    ACCOUNT,
    NOW,
    TENANT,
    FixedClock,
    ScriptedModelClient,
    build_test_container,
    make_body,
    make_settings,
    seed_account,
)


async def _container(*, evaluated_at: float = NOW - 2 * 86400, clock: FixedClock | None = None, **settings):
    read_models = InMemoryReadModels()
    seed_account(read_models, evaluated_at=evaluated_at)
    return await build_test_container(
        read_models,
        ScriptedModelClient(make_body()),
        clock or FixedClock(),
        settings=make_settings(**settings),
    )


def _event(event_type: DecisionEventType, source: str = "decision-runtime", **data) -> DecisionEvent:
    payload = {"tenant_id": TENANT, "account_id": ACCOUNT}
    payload.update(data)
    return DecisionEvent(event_type=event_type, tenant_id=TENANT, account_id=ACCOUNT, source=source, data=payload)


@pytest.mark.asyncio
async def test_run_decision_flows_through_to_a_proposal() -> None:
    container = await _container()
    consumer = EventConsumer(container)

    outcome = await consumer.dispatch(_event(
        DecisionEventType.RUN_DECISION,
        trigger_type="SIGNAL_ARRIVED",
        idempotency_key="idem-1",
    ))
    assert outcome.status == AdmissionStatus.ADMITTED

    [requested] = container.event_bus.published(DecisionEventType.DECISION_EVALUATION_REQUESTED)
    result = await consumer.dispatch(requested)

    assert result.outcome == EvaluationOutcome.COMPLETED
    assert [e.event_type for e in container.ledger.entries][:2] == [
        LedgerEventType.EVALUATION_REQUESTED,
        LedgerEventType.DECISION_PROPOSED,
    ]
    status = await container.ledger.get_evaluation_status(TENANT, ACCOUNT, result.evaluation_id)
    assert status.status == EvaluationState.COMPLETED


@pytest.mark.asyncio
async def test_api_requests_skip_the_consumer_when_inline() -> None:
    container = await _container(inline_evaluation=True)
    event = await request_evaluation(container, TENANT, ACCOUNT, "EXPLICIT_USER_REQUEST", evaluation_id="eval_1")

    assert await handle_evaluation_requested(container, event) is None
    assert container.event_bus.published(DecisionEventType.DECISION_PROPOSED) == []


@pytest.mark.asyncio
async def test_api_requests_evaluate_under_their_own_id_when_queued() -> None:
    container = await _container(inline_evaluation=False)
    event = await request_evaluation(container, TENANT, ACCOUNT, "EXPLICIT_USER_REQUEST", evaluation_id="eval_1")

    result = await handle_evaluation_requested(container, event)

    assert result.evaluation_id == "eval_1"
    requested = [e for e in container.ledger.entries if e.event_type == LedgerEventType.EVALUATION_REQUESTED]
    assert len(requested) == 1


@pytest.mark.asyncio
async def test_evaluation_request_requires_ids() -> None:
    container = await _container()
    event = DecisionEvent(event_type=DecisionEventType.DECISION_EVALUATION_REQUESTED, tenant_id="", account_id="")

    with pytest.raises(ValidationError):
        await handle_evaluation_requested(container, event)


@pytest.mark.asyncio
async def test_deferred_event_schedules_and_fires_retry() -> None:
    clock = FixedClock()
    container = await _container(clock=clock)
    consumer = EventConsumer(container)

    schedule = await consumer.dispatch(_event(
        DecisionEventType.RUN_DECISION_DEFERRED,
        trigger_type="SIGNAL_ARRIVED",
        original_idempotency_key="idem-1",
        defer_until_epoch=NOW + 300,
    ))
    assert schedule.fire_at_epoch == NOW + 300
    assert await consumer.fire_due() == 0

    clock.advance(300)
    assert await consumer.fire_due() == 1

    [retry] = container.event_bus.published(DecisionEventType.RUN_DECISION)
    assert retry.data["idempotency_key"] == schedule.payload["data"]["idempotency_key"]


@pytest.mark.asyncio
async def test_budget_reset_event() -> None:
    container = await _container()
    await container.budget.consume_budget(TENANT, ACCOUNT)

    await EventConsumer(container).dispatch(_event(DecisionEventType.BUDGET_RESET))

    budget = await container.budget.get_budget(TENANT, ACCOUNT)
    assert budget.daily_decisions_remaining == 10


@pytest.mark.asyncio
async def test_dispatch_logs_and_swallows_handler_failures() -> None:
    container = await _container()
    router = EventRouter()

    async def _boom(event):
        raise RuntimeError("boom")

    router.register(DecisionEventType.BUDGET_RESET, _boom)

    assert await EventConsumer(container, router).dispatch(_event(DecisionEventType.BUDGET_RESET)) is None


@pytest.mark.asyncio
async def test_router_registers_consumed_types() -> None:
    router = build_router(await _container())

    assert router.handles(DecisionEventType.RUN_DECISION)
    assert router.handles(DecisionEventType.RUN_DECISION_DEFERRED)
    assert router.handles(DecisionEventType.DECISION_EVALUATION_REQUESTED)
    assert router.handles(DecisionEventType.BUDGET_RESET)
    assert not router.handles(DecisionEventType.DECISION_PROPOSED)


@pytest.mark.asyncio
async def test_consumer_processes_bus_events() -> None:
    container = await _container(inline_evaluation=False)
    consumer = EventConsumer(container)
    consumer.start()
    try:
        await request_evaluation(container, TENANT, ACCOUNT, "EXPLICIT_USER_REQUEST", evaluation_id="eval_1")
        for _ in range(50):
            if container.event_bus.published(DecisionEventType.DECISION_PROPOSED):
                break
            await asyncio.sleep(0.01)
    finally:
        await consumer.stop()

    assert len(container.event_bus.published(DecisionEventType.DECISION_PROPOSED)) == 1


@pytest.mark.asyncio
async def test_schedule_polling_survives_scheduler_errors(monkeypatch) -> None:
    container = await _container(schedule_poll_seconds=0.01)
    pop_due = container.scheduler.pop_due
    calls = []

    async def _flaky_pop_due(now_epoch):
        calls.append(now_epoch)
        if len(calls) == 1:
            raise ConnectionError("redis unavailable")
        return await pop_due(now_epoch)

    monkeypatch.setattr(container.scheduler, "pop_due", _flaky_pop_due)
    consumer = EventConsumer(container)
    consumer.start()
    try:
        for _ in range(50):
            if len(calls) > 1:
                break
            await asyncio.sleep(0.01)
        await container.deferred_retry.handle_deferred(_event(
            DecisionEventType.RUN_DECISION_DEFERRED,
            trigger_type="SIGNAL_ARRIVED",
            original_idempotency_key="idem-1",
            defer_until_epoch=NOW,
        ))
        for _ in range(50):
            if container.event_bus.published(DecisionEventType.RUN_DECISION):
                break
            await asyncio.sleep(0.01)
    finally:
        await consumer.stop()

    assert len(calls) > 1
    assert len(container.event_bus.published(DecisionEventType.RUN_DECISION)) == 1
    assert container.scheduler.schedules == []


@pytest.mark.asyncio
async def test_lifecycle_event_requests_evaluation() -> None:
    container = await _container()

    evaluation = await handle_lifecycle_or_signal_event(container, {
        "event_type": "LIFECYCLE_STATE_CHANGED",
        "source": "lifecycle",
        "data": {"tenant_id": TENANT, "account_id": ACCOUNT},
    })

    assert evaluation.should_evaluate is True
    [event] = container.event_bus.published(DecisionEventType.DECISION_EVALUATION_REQUESTED)
    assert event.source == "lifecycle"
    assert event.data["trigger_type"] == "LIFECYCLE_TRANSITION"


@pytest.mark.asyncio
async def test_signal_in_cooldown_does_not_request() -> None:
    container = await _container(evaluated_at=NOW - 3600)

    evaluation = await handle_lifecycle_or_signal_event(container, {
        "event_type": "SIGNAL_DETECTED",
        "data": {"tenant_id": TENANT, "account_id": ACCOUNT, "signal_type": "RENEWAL_WINDOW_ENTERED"},
    })

    assert evaluation.should_evaluate is False
    assert container.event_bus.history == []


@pytest.mark.asyncio
async def test_unmapped_upstream_event_is_ignored() -> None:
    container = await _container()

    assert await handle_lifecycle_or_signal_event(container, {"event_type": "SOMETHING"}) is None


@pytest.mark.asyncio
async def test_upstream_event_requires_ids() -> None:
    container = await _container()

    with pytest.raises(ValidationError):
        await handle_lifecycle_or_signal_event(container, {"event_type": "LIFECYCLE_STATE_CHANGED", "data": {}})
