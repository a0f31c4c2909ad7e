"""
Deferred-retry scheduling.

A denied admission (cost gate DEFER, or a lost admission-lock race) is
re-delivered exactly once at ``defer_until_epoch`` under a brand-new
idempotency key. The schedule fires at most once, is never retried by the
scheduling layer, and is deleted after firing.
"""

from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from ..errors import ValidationError
from ..events.types import DecisionEvent, DecisionEventType
from ..logging import get_logger
from .idempotency import retry_idempotency_key

logger = get_logger("decision_runtime.scheduler")

MAX_SCHEDULE_NAME_LENGTH = 128
DEFAULT_MAX_EVENT_AGE_SECONDS = 86400

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")


@dataclass(frozen=True)
class OneTimeSchedule:
    """A fire-once schedule for a single payload."""
    name: str
    fire_at_epoch: int
    payload: dict[str, Any]
    max_retries: int = 0
    max_event_age_seconds: int = DEFAULT_MAX_EVENT_AGE_SECONDS
    delete_after_fire: bool = True

    @property
    def schedule_expression(self) -> str:
        at = datetime.fromtimestamp(self.fire_at_epoch, tz=timezone.utc)
        return f"at({at.strftime('%Y-%m-%dT%H:%M:%S')}Z)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "fire_at_epoch": self.fire_at_epoch,
            "schedule_expression": self.schedule_expression,
            "payload": self.payload,
            "max_retries": self.max_retries,
            "max_event_age_seconds": self.max_event_age_seconds,
            "delete_after_fire": self.delete_after_fire,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OneTimeSchedule:
        return cls(
            name=data["name"],
            fire_at_epoch=int(data["fire_at_epoch"]),
            payload=dict(data["payload"]),
            max_retries=int(data.get("max_retries", 0)),
            max_event_age_seconds=int(data.get("max_event_age_seconds", DEFAULT_MAX_EVENT_AGE_SECONDS)),
            delete_after_fire=bool(data.get("delete_after_fire", True)),
        )


def schedule_name(tenant_id: str, account_id: str, defer_until_epoch: int) -> str:
    safe_tenant = _UNSAFE_NAME_CHARS.sub("-", tenant_id)
    safe_account = _UNSAFE_NAME_CHARS.sub("-", account_id)
    return f"run-decision-{safe_tenant}-{safe_account}-{defer_until_epoch}"[:MAX_SCHEDULE_NAME_LENGTH]


class Scheduler(ABC):
    """Durable one-time scheduler primitive."""

    @abstractmethod
    async def create_one_time_schedule(self, schedule: OneTimeSchedule) -> bool:
        """Create the schedule. Returns False when one with the same name exists."""
        ...

    @abstractmethod
    async def pop_due(self, now_epoch: int) -> list[OneTimeSchedule]:
        """Atomically remove and return schedules due at ``now_epoch``."""
        ...


class InMemoryScheduler(Scheduler):
    def __init__(self) -> None:
        self._schedules: dict[str, OneTimeSchedule] = {}
        self._lock = asyncio.Lock()

    @property
    def schedules(self) -> list[OneTimeSchedule]:
        return sorted(self._schedules.values(), key=lambda s: (s.fire_at_epoch, s.name))

    async def create_one_time_schedule(self, schedule: OneTimeSchedule) -> bool:
        async with self._lock:
            if schedule.name in self._schedules:
                return False
            self._schedules[schedule.name] = schedule
            return True

    async def pop_due(self, now_epoch: int) -> list[OneTimeSchedule]:
        async with self._lock:
            due = [s for s in self._schedules.values() if s.fire_at_epoch <= now_epoch]
            for s in due:
                del self._schedules[s.name]
            return sorted(due, key=lambda s: (s.fire_at_epoch, s.name))


class DeferredRetryScheduler:
    """Turns RUN_DECISION_DEFERRED events into one-time re-deliveries."""

    REQUIRED_FIELDS = ("tenant_id", "account_id", "trigger_type", "original_idempotency_key", "defer_until_epoch")

    def __init__(
        self,
        scheduler: Scheduler,
        clock: Callable[[], float] = time.time,
    ):
        self._scheduler = scheduler
        self._clock = clock

    def build_retry_schedule(self, deferred: DecisionEvent) -> OneTimeSchedule:
        data = deferred.data
        missing = [name for name in self.REQUIRED_FIELDS if data.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Deferred event missing required fields: {', '.join(missing)}",
                field_name=missing[0],
            )

        defer_until = int(data["defer_until_epoch"])
        tenant_id = str(data["tenant_id"])
        account_id = str(data["account_id"])
        new_key = retry_idempotency_key(str(data["original_idempotency_key"]), defer_until)
        scheduled_at = datetime.fromtimestamp(defer_until, tz=timezone.utc).isoformat()

        run_event = DecisionEvent(
            event_type=DecisionEventType.RUN_DECISION,
            tenant_id=tenant_id,
            account_id=account_id,
            correlation_id=data.get("correlation_id") or deferred.correlation_id,
            data={
                "tenant_id": tenant_id,
                "account_id": account_id,
                "trigger_type": data["trigger_type"],
                "idempotency_key": new_key,
                "correlation_id": data.get("correlation_id") or deferred.correlation_id,
                "scheduled_at": scheduled_at,
            },
        )
        return OneTimeSchedule(
            name=schedule_name(tenant_id, account_id, defer_until),
            fire_at_epoch=defer_until,
            payload=run_event.to_dict(),
        )

    async def handle_deferred(self, deferred: DecisionEvent) -> OneTimeSchedule:
        schedule = self.build_retry_schedule(deferred)
        created = await self._scheduler.create_one_time_schedule(schedule)
        logger.info(
            "Deferred retry scheduled" if created else "Deferred retry already scheduled",
            tenant_id=deferred.data.get("tenant_id"),
            account_id=deferred.data.get("account_id"),
            schedule_name=schedule.name,
            schedule_expression=schedule.schedule_expression,
            retry_idempotency_key=schedule.payload["data"]["idempotency_key"],
        )
        return schedule

    async def fire_due(
        self,
        deliver: Callable[[DecisionEvent], Awaitable[Any]],
        now_epoch: int | None = None,
    ) -> int:
        """
        Deliver every due schedule exactly once. Returns the number delivered.

        A schedule whose delivery raises is re-armed under the same name and
        picked up again by the next call; the remaining due schedules are
        still delivered.
        """
        now = int(self._clock()) if now_epoch is None else now_epoch
        fired = 0
        for schedule in await self._scheduler.pop_due(now):
            if now - schedule.fire_at_epoch > schedule.max_event_age_seconds:
                logger.warning("Dropping stale schedule", schedule_name=schedule.name)
                continue
            try:
                await deliver(DecisionEvent.from_dict(schedule.payload))
            except Exception as e:
                logger.log_error(e, "Schedule delivery failed, re-arming", schedule_name=schedule.name)
                await self._scheduler.create_one_time_schedule(schedule)
                continue
            fired += 1
        return fired


__all__ = [
    "MAX_SCHEDULE_NAME_LENGTH",
    "DEFAULT_MAX_EVENT_AGE_SECONDS",
    "OneTimeSchedule",
    "schedule_name",
    "Scheduler",
    "InMemoryScheduler",
    "DeferredRetryScheduler",
]
