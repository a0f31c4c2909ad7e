"""
Per-account run state and the admission lock.

The admission lock is the authoritative gate on starting an evaluation
cycle. Acquisition is one atomic conditional update that requires both:

- ``last_allowed_at_epoch + cooldown_seconds <= now`` (or no prior run)
- ``run_count_this_hour < max_per_account_per_hour`` (0 means unbounded)

and on success sets ``last_allowed_at_epoch = now`` and increments the hourly
counter in the same step. The counter belongs to a clock-hour bucket
(``now // 3600``); the first acquisition in a new bucket starts it at 1.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from ..triggers.types import TriggerRegistryEntry

HOUR_SECONDS = 3600


@dataclass(frozen=True)
class RunState:
    tenant_id: str
    account_id: str
    trigger_type: str
    last_allowed_at_epoch: int
    run_count_this_hour: int
    hour_bucket: int
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "trigger_type": self.trigger_type,
            "last_allowed_at_epoch": self.last_allowed_at_epoch,
            "run_count_this_hour": self.run_count_this_hour,
            "hour_bucket": self.hour_bucket,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RunState:
        return cls(
            tenant_id=str(data["tenant_id"]),
            account_id=str(data["account_id"]),
            trigger_type=str(data["trigger_type"]),
            last_allowed_at_epoch=int(data["last_allowed_at_epoch"]),
            run_count_this_hour=int(data.get("run_count_this_hour", 0)),
            hour_bucket=int(data.get("hour_bucket", 0)),
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass(frozen=True)
class AdmissionResult:
    acquired: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"acquired": self.acquired, "reason": self.reason}


ADMITTED = AdmissionResult(acquired=True)
DENIED_COOLDOWN = AdmissionResult(acquired=False, reason="COOLDOWN")
DENIED_RATE_LIMITED = AdmissionResult(acquired=False, reason="RATE_LIMITED")


def run_state_key(tenant_id: str, account_id: str, trigger_type: str) -> str:
    return f"RUN_STATE#{tenant_id}#{account_id}#{trigger_type}"


def evaluate_admission(
    state: RunState | None,
    entry: TriggerRegistryEntry,
    now: int,
) -> AdmissionResult:
    """Admission condition shared by every backend."""
    if state is not None:
        if now < state.last_allowed_at_epoch:
            return DENIED_COOLDOWN
        if state.last_allowed_at_epoch + entry.cooldown_seconds > now:
            return DENIED_COOLDOWN
        count = state.run_count_this_hour if state.hour_bucket == now // HOUR_SECONDS else 0
        if entry.max_per_account_per_hour > 0 and count >= entry.max_per_account_per_hour:
            return DENIED_RATE_LIMITED
    return ADMITTED


class RunStateStore(ABC):
    """Abstract store for run state with an atomic admission lock."""

    @abstractmethod
    async def get_state(self, tenant_id: str, account_id: str, trigger_type: str) -> RunState | None:
        ...

    @abstractmethod
    async def try_acquire_admission_lock(
        self,
        tenant_id: str,
        account_id: str,
        trigger_type: str,
        entry: TriggerRegistryEntry,
    ) -> AdmissionResult:
        ...


class InMemoryRunStateStore(RunStateStore):
    """In-memory run state store. The lock emulates the store's conditional write."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._states: dict[str, RunState] = {}
        self._lock = asyncio.Lock()

    async def get_state(self, tenant_id: str, account_id: str, trigger_type: str) -> RunState | None:
        return self._states.get(run_state_key(tenant_id, account_id, trigger_type))

    async def try_acquire_admission_lock(
        self,
        tenant_id: str,
        account_id: str,
        trigger_type: str,
        entry: TriggerRegistryEntry,
    ) -> AdmissionResult:
        key = run_state_key(tenant_id, account_id, trigger_type)
        async with self._lock:
            now = int(self._clock())
            state = self._states.get(key)
            result = evaluate_admission(state, entry, now)
            if not result.acquired:
                return result

            bucket = now // HOUR_SECONDS
            updated_at = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
            if state is None:
                state = RunState(
                    tenant_id=tenant_id,
                    account_id=account_id,
                    trigger_type=trigger_type,
                    last_allowed_at_epoch=now,
                    run_count_this_hour=1,
                    hour_bucket=bucket,
                    updated_at=updated_at,
                )
            else:
                count = state.run_count_this_hour if state.hour_bucket == bucket else 0
                state = replace(
                    state,
                    last_allowed_at_epoch=now,
                    run_count_this_hour=count + 1,
                    hour_bucket=bucket,
                    updated_at=updated_at,
                )
            self._states[key] = state
            return result

    def seed(self, state: RunState) -> None:
        self._states[run_state_key(state.tenant_id, state.account_id, state.trigger_type)] = state


__all__ = [
    "HOUR_SECONDS",
    "RunState",
    "AdmissionResult",
    "run_state_key",
    "evaluate_admission",
    "RunStateStore",
    "InMemoryRunStateStore",
]
