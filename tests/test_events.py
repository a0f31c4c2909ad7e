"""
Tests for decision events, the in-memory bus and the router.
"""

import asyncio
import json
import logging

import pytest

from decision_runtime.events import DecisionEvent, DecisionEventType, EventRouter, InMemoryEventBus

from tests._decision_testkit import ACCOUNT, TENANT


def _event(event_type=DecisionEventType.RUN_DECISION, **kwargs):
    return DecisionEvent(event_type=event_type, tenant_id=TENANT, account_id=ACCOUNT, **kwargs)


async def _drain(bus, sub):
    """Collect queued events, then unsubscribe to end the stream."""
    task = asyncio.create_task(_collect(bus, sub))
    await asyncio.sleep(0)
    bus.unsubscribe(sub)
    return await asyncio.wait_for(task, timeout=1)


async def _collect(bus, sub):
    return [e async for e in bus.events(sub)]


class TestDecisionEvent:
    def test_round_trip(self):
        event = _event(data={"trigger_event_id": "e-1"}, correlation_id="c-1")

        assert DecisionEvent.from_dict(event.to_dict()) == event

    def test_ids_fall_back_to_payload(self):
        event = DecisionEvent.from_dict({
            "event_type": "BUDGET_RESET",
            "data": {"tenant_id": TENANT, "account_id": ACCOUNT, "correlation_id": "c-9"},
        })

        assert event.tenant_id == TENANT
        assert event.account_id == ACCOUNT
        assert event.correlation_id == "c-9"
        assert event.source == "decision-runtime"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            DecisionEvent.from_dict({"event_type": "SOMETHING_ELSE"})


class TestInMemoryEventBus:
    """Test publication, filtering and shutdown."""

    @pytest.mark.asyncio
    async def test_subscription_filters_types(self):
        bus = InMemoryEventBus()
        sub = bus.subscribe(event_types={DecisionEventType.ACTION_APPROVED})

        await bus.publish(_event())
        await bus.publish(_event(DecisionEventType.ACTION_APPROVED))

        received = await _drain(bus, sub)
        assert [e.event_type for e in received] == [DecisionEventType.ACTION_APPROVED]

    @pytest.mark.asyncio
    async def test_history_and_published(self):
        bus = InMemoryEventBus()

        await bus.publish(_event())
        await bus.publish(_event(DecisionEventType.BUDGET_RESET))

        assert len(bus.history) == 2
        assert len(bus.published(DecisionEventType.BUDGET_RESET)) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_ends_iteration(self):
        bus = InMemoryEventBus()
        sub = bus.subscribe()
        await bus.publish(_event())

        assert len(await _drain(bus, sub)) == 1
        assert [e async for e in bus.events(sub)] == []

    @pytest.mark.asyncio
    async def test_closed_bus_rejects_publish(self):
        bus = InMemoryEventBus()
        await bus.close()

        with pytest.raises(RuntimeError):
            await bus.publish(_event())

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self, caplog):
        bus = InMemoryEventBus(max_queue_size=2)
        sub = bus.subscribe()
        events = [_event(data={"n": i}) for i in range(3)]

        with caplog.at_level(logging.WARNING, logger="decision_runtime.events"):
            for event in events:
                await bus.publish(event)

        assert [e.data for e in await _drain(bus, sub)] == [{"n": 1}, {"n": 2}]
        [warning] = [json.loads(r.getMessage()) for r in caplog.records]
        assert warning["dropped_event_id"] == events[0].event_id
        assert warning["dropped_event_type"] == "RUN_DECISION"


class TestEventRouter:
    @pytest.mark.asyncio
    async def test_routes_by_type(self):
        router = EventRouter()
        seen = []

        async def handler(event):
            seen.append(event.event_id)
            return "ok"

        router.register(DecisionEventType.RUN_DECISION, handler)
        event = _event()

        assert router.handles(DecisionEventType.RUN_DECISION)
        assert await router.route(event) == "ok"
        assert seen == [event.event_id]

    @pytest.mark.asyncio
    async def test_unhandled_type_returns_none(self):
        assert await EventRouter().route(_event()) is None

    def test_duplicate_registration(self):
        router = EventRouter()

        async def handler(event):
            return None

        router.register(DecisionEventType.RUN_DECISION, handler)
        with pytest.raises(ValueError):
            router.register(DecisionEventType.RUN_DECISION, handler)
