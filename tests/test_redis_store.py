"""
Tests for the Redis scheduler scripts against an in-process Redis.
"""

import asyncio

import pytest

from decision_runtime.admission import DeferredRetryScheduler, OneTimeSchedule
from decision_runtime.events import DecisionEvent, DecisionEventType
from decision_runtime.storage import RedisScheduler

from tests._decision_testkit import ACCOUNT, NOW, TENANT

fakeredis = pytest.importorskip("fakeredis")
pytest.importorskip("lupa")


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


def _schedule(name="run-decision-t-a-1", fire_at=NOW + 300):
    return OneTimeSchedule(name=name, fire_at_epoch=fire_at, payload={"event_type": "RUN_DECISION"})


class TestRedisScheduler:
    """Test schedule creation and the atomic pop of due schedules."""

    @pytest.mark.asyncio
    async def test_create_is_once_per_name(self, redis_client):
        scheduler = RedisScheduler(redis_client, prefix="test")

        assert await scheduler.create_one_time_schedule(_schedule()) is True
        assert await scheduler.create_one_time_schedule(_schedule(fire_at=NOW + 999)) is False

        assert await redis_client.zscore("test:SCHEDULES:due", "run-decision-t-a-1") == NOW + 300
        assert await redis_client.hlen("test:SCHEDULES:payload") == 1

    @pytest.mark.asyncio
    async def test_pop_due_fires_exactly_once(self, redis_client):
        scheduler = RedisScheduler(redis_client, prefix="test")
        await scheduler.create_one_time_schedule(_schedule("b", NOW + 10))
        await scheduler.create_one_time_schedule(_schedule("a", NOW + 10))
        await scheduler.create_one_time_schedule(_schedule("later", NOW + 500))

        assert await scheduler.pop_due(NOW) == []
        due = await scheduler.pop_due(NOW + 10)

        assert [s.name for s in due] == ["a", "b"]
        assert due[0] == _schedule("a", NOW + 10)
        assert await scheduler.pop_due(NOW + 10) == []
        assert await redis_client.zcard("test:SCHEDULES:due") == 1
        assert await redis_client.hkeys("test:SCHEDULES:payload") == ["later"]

    @pytest.mark.asyncio
    async def test_concurrent_pops_share_nothing(self, redis_client):
        scheduler = RedisScheduler(redis_client, prefix="test")
        for i in range(5):
            await scheduler.create_one_time_schedule(_schedule(f"s{i}", NOW))

        batches = await asyncio.gather(*(scheduler.pop_due(NOW) for _ in range(4)))

        names = [s.name for batch in batches for s in batch]
        assert sorted(names) == ["s0", "s1", "s2", "s3", "s4"]

    @pytest.mark.asyncio
    async def test_popped_name_can_be_scheduled_again(self, redis_client):
        scheduler = RedisScheduler(redis_client, prefix="test")
        await scheduler.create_one_time_schedule(_schedule())
        await scheduler.pop_due(NOW + 300)

        assert await scheduler.create_one_time_schedule(_schedule()) is True

    @pytest.mark.asyncio
    async def test_deferred_retry_delivers_once(self, redis_client):
        retry = DeferredRetryScheduler(RedisScheduler(redis_client, prefix="test"), clock=lambda: NOW)
        deferred = DecisionEvent(
            event_type=DecisionEventType.RUN_DECISION_DEFERRED,
            tenant_id=TENANT,
            account_id=ACCOUNT,
            data={
                "tenant_id": TENANT,
                "account_id": ACCOUNT,
                "trigger_type": "SIGNAL_ARRIVED",
                "original_idempotency_key": "orig-key",
                "defer_until_epoch": NOW + 300,
            },
        )
        schedule = await retry.handle_deferred(deferred)
        await retry.handle_deferred(deferred)
        delivered = []

        async def deliver(event):
            delivered.append(event)

        assert await retry.fire_due(deliver, now_epoch=NOW + 300) == 1
        assert await retry.fire_due(deliver, now_epoch=NOW + 301) == 0
        [event] = delivered
        assert event.event_type == DecisionEventType.RUN_DECISION
        assert event.data["idempotency_key"] == schedule.payload["data"]["idempotency_key"]
