"""
Idempotency store for pipeline entry deduplication.

Idempotency Boundaries
----------------------
A key is reserved once per trigger occurrence with a conditional
"create if absent" write. Exactly one caller among any number of concurrent
or duplicate deliveries receives ``ReserveResult.RESERVED``; everyone else
receives ``ReserveResult.ALREADY_EXISTS`` and must stop with no further side
effects.

Reservations expire after a fixed TTL (24 hours by default). Duplicate
suppression is therefore time-bounded: the same key may be admitted again
once its record has expired.

Retry Keys
----------
A deferred retry never reuses the original key. ``retry_idempotency_key``
derives a fresh key from the original key and the defer-until epoch.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..hashing import compute_hash

DEFAULT_IDEMPOTENCY_TTL_SECONDS = 86400


class ReserveResult(str, Enum):
    """Outcome of a reservation attempt."""
    RESERVED = "RESERVED"
    ALREADY_EXISTS = "ALREADY_EXISTS"

    @property
    def reserved(self) -> bool:
        return self is ReserveResult.RESERVED


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    reserved_at: float
    ttl_seconds: int

    @property
    def expires_at(self) -> float:
        return self.reserved_at + self.ttl_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "pk": idempotency_record_key(self.key),
            "key": self.key,
            "reserved_at": self.reserved_at,
            "ttl": int(self.expires_at),
        }


def idempotency_record_key(key: str) -> str:
    return f"IDEMPOTENCY#{key}"


def retry_idempotency_key(original_key: str, defer_until_epoch: int) -> str:
    """Derive the key for a deferred re-delivery."""
    return compute_hash(f"{original_key}|retry|{defer_until_epoch}", algorithm="sha256")


class IdempotencyStore(ABC):
    """Abstract conditional-insert store for idempotency keys."""

    @abstractmethod
    async def reserve(self, key: str) -> ReserveResult:
        """Reserve ``key`` if absent (or expired)."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an unexpired reservation exists for ``key``."""
        ...


class InMemoryIdempotencyStore(IdempotencyStore):
    """In-memory idempotency store for testing and single-process use."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_IDEMPOTENCY_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = asyncio.Lock()

    async def reserve(self, key: str) -> ReserveResult:
        async with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is not None and record.expires_at > now:
                return ReserveResult.ALREADY_EXISTS
            self._records[key] = IdempotencyRecord(key=key, reserved_at=now, ttl_seconds=self._ttl)
            return ReserveResult.RESERVED

    async def exists(self, key: str) -> bool:
        async with self._lock:
            record = self._records.get(key)
            return record is not None and record.expires_at > self._clock()


__all__ = [
    "DEFAULT_IDEMPOTENCY_TTL_SECONDS",
    "ReserveResult",
    "IdempotencyRecord",
    "idempotency_record_key",
    "retry_idempotency_key",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
]
