"""
Persistent backends.

Redis holds the hot admission state (idempotency keys, run state, deferred
schedules). Postgres holds the durable records (proposals, intents, budgets,
ledger). Both are reached through an explicitly managed ``StoreConnections``.
"""

from .connections import StoreConnections
from .redis_store import RedisIdempotencyStore, RedisRunStateStore, RedisScheduler
from .postgres_store import (
    PostgresProposalStore,
    PostgresActionIntentStore,
    PostgresBudgetStore,
    PostgresDecisionLedger,
)

__all__ = [
    "StoreConnections",
    "RedisIdempotencyStore",
    "RedisRunStateStore",
    "RedisScheduler",
    "PostgresProposalStore",
    "PostgresActionIntentStore",
    "PostgresBudgetStore",
    "PostgresDecisionLedger",
]
