"""
Redis backends for admission state.

- RedisIdempotencyStore: ``SET NX EX`` reservation
- RedisRunStateStore: admission lock as one Lua compare-and-set
- RedisScheduler: one-time schedules in a sorted set, created and popped by Lua scripts
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Callable

import redis.asyncio as redis_lib

from ..admission.idempotency import (
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    IdempotencyStore,
    ReserveResult,
    idempotency_record_key,
)
from ..admission.run_state import (
    ADMITTED,
    DENIED_COOLDOWN,
    DENIED_RATE_LIMITED,
    HOUR_SECONDS,
    AdmissionResult,
    RunState,
    RunStateStore,
    run_state_key,
)
from ..admission.scheduler import OneTimeSchedule, Scheduler
from ..triggers.types import TriggerRegistryEntry

DEFAULT_PREFIX = "decision"


class RedisIdempotencyStore(IdempotencyStore):
    def __init__(
        self,
        client: redis_lib.Redis,
        ttl_seconds: int = DEFAULT_IDEMPOTENCY_TTL_SECONDS,
        prefix: str = DEFAULT_PREFIX,
    ):
        self._redis = client
        self._ttl = ttl_seconds
        self._prefix = prefix

    def _rk(self, key: str) -> str:
        return f"{self._prefix}:{idempotency_record_key(key)}"

    async def reserve(self, key: str) -> ReserveResult:
        created = await self._redis.set(self._rk(key), str(int(time.time())), nx=True, ex=self._ttl)
        return ReserveResult.RESERVED if created else ReserveResult.ALREADY_EXISTS

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(self._rk(key)))


# Returns ACQUIRED, COOLDOWN or RATE_LIMITED.
_ACQUIRE_LOCK_SCRIPT = """
local now = tonumber(ARGV[1])
local cooldown = tonumber(ARGV[2])
local max_per_hour = tonumber(ARGV[3])
local bucket = math.floor(now / tonumber(ARGV[4]))
local count = 0
local last = tonumber(redis.call('HGET', KEYS[1], 'last_allowed_at_epoch'))
if last then
  if now < last or last + cooldown > now then
    return 'COOLDOWN'
  end
  if tonumber(redis.call('HGET', KEYS[1], 'hour_bucket')) == bucket then
    count = tonumber(redis.call('HGET', KEYS[1], 'run_count_this_hour')) or 0
  end
  if max_per_hour > 0 and count >= max_per_hour then
    return 'RATE_LIMITED'
  end
end
redis.call('HSET', KEYS[1],
  'tenant_id', ARGV[5],
  'account_id', ARGV[6],
  'trigger_type', ARGV[7],
  'last_allowed_at_epoch', ARGV[1],
  'run_count_this_hour', tostring(count + 1),
  'hour_bucket', tostring(bucket),
  'updated_at', ARGV[8])
return 'ACQUIRED'
"""

_LOCK_RESULTS: dict[str, AdmissionResult] = {
    "ACQUIRED": ADMITTED,
    "COOLDOWN": DENIED_COOLDOWN,
    "RATE_LIMITED": DENIED_RATE_LIMITED,
}


class RedisRunStateStore(RunStateStore):
    def __init__(
        self,
        client: redis_lib.Redis,
        prefix: str = DEFAULT_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client
        self._prefix = prefix
        self._clock = clock
        self._acquire = client.register_script(_ACQUIRE_LOCK_SCRIPT)

    def _rk(self, tenant_id: str, account_id: str, trigger_type: str) -> str:
        return f"{self._prefix}:{run_state_key(tenant_id, account_id, trigger_type)}"

    async def get_state(self, tenant_id: str, account_id: str, trigger_type: str) -> RunState | None:
        data = await self._redis.hgetall(self._rk(tenant_id, account_id, trigger_type))
        if not data:
            return None
        return RunState.from_dict(data)

    async def try_acquire_admission_lock(
        self,
        tenant_id: str,
        account_id: str,
        trigger_type: str,
        entry: TriggerRegistryEntry,
    ) -> AdmissionResult:
        now = int(self._clock())
        result = await self._acquire(
            keys=[self._rk(tenant_id, account_id, trigger_type)],
            args=[
                now,
                entry.cooldown_seconds,
                entry.max_per_account_per_hour,
                HOUR_SECONDS,
                tenant_id,
                account_id,
                trigger_type,
                datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            ],
        )
        if isinstance(result, bytes):
            result = result.decode()
        return _LOCK_RESULTS[result]


_POP_DUE_SCRIPT = """
local names = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
local out = {}
for _, name in ipairs(names) do
  local payload = redis.call('HGET', KEYS[2], name)
  redis.call('ZREM', KEYS[1], name)
  redis.call('HDEL', KEYS[2], name)
  if payload then
    table.insert(out, payload)
  end
end
return out
"""


# Payload and index entry are written together or not at all.
_CREATE_SCHEDULE_SCRIPT = """
if redis.call('HSETNX', KEYS[2], ARGV[1], ARGV[3]) == 0 then
  return 0
end
redis.call('ZADD', KEYS[1], ARGV[2], ARGV[1])
return 1
"""


class RedisScheduler(Scheduler):
    """One-time schedules stored as a sorted set keyed by fire time."""

    def __init__(self, client: redis_lib.Redis, prefix: str = DEFAULT_PREFIX):
        self._index_key = f"{prefix}:SCHEDULES:due"
        self._payload_key = f"{prefix}:SCHEDULES:payload"
        self._create = client.register_script(_CREATE_SCHEDULE_SCRIPT)
        self._pop_due = client.register_script(_POP_DUE_SCRIPT)

    async def create_one_time_schedule(self, schedule: OneTimeSchedule) -> bool:
        created = await self._create(
            keys=[self._index_key, self._payload_key],
            args=[schedule.name, schedule.fire_at_epoch, json.dumps(schedule.to_dict())],
        )
        return bool(int(created))

    async def pop_due(self, now_epoch: int) -> list[OneTimeSchedule]:
        raw = await self._pop_due(keys=[self._index_key, self._payload_key], args=[now_epoch])
        schedules = [OneTimeSchedule.from_dict(json.loads(item)) for item in raw]
        return sorted(schedules, key=lambda s: (s.fire_at_epoch, s.name))


__all__ = [
    "RedisIdempotencyStore",
    "RedisRunStateStore",
    "RedisScheduler",
]
