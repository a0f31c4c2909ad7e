"""
PostgreSQL storage adapters for the decision runtime.

This module provides persistent implementations using PostgreSQL:
- PostgresProposalStore: create-only decision proposals
- PostgresActionIntentStore: immutable action intents
- PostgresBudgetStore: per-account budgets with conditional decrement
- PostgresDecisionLedger: append-only ledger entries
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from typing import Any

import asyncpg

from ..decisions.budget import AccountBudget, BudgetStore
from ..decisions.intents import ActionIntentStore, validate_provenance
from ..decisions.proposal_store import ProposalStore
from ..decisions.types import ActionIntent, DecisionProposal
from ..errors import AlreadyExistsError, ErrorContext
from ..ledger import DecisionLedger, LedgerEntry, LedgerEventType


def _sanitize_table_name(name: str) -> str:
    """Ensure the table name is safe for SQL interpolation."""
    if not name:
        raise ValueError("table_name cannot be empty")
    if not re.fullmatch(r"[a-zA-Z0-9_]+", name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


def _load_json(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class _PostgresTable:
    """Shared lazy DDL handling."""

    TABLE_NAME = ""

    def __init__(self, pool: Any, table_name: str | None = None):
        self._pool = pool
        self._table = _sanitize_table_name(table_name or self.TABLE_NAME)
        self._ensured = False
        self._lock = asyncio.Lock()

    def _ddl(self) -> str:
        raise NotImplementedError

    async def _ensure_table(self) -> None:
        async with self._lock:
            if self._ensured:
                return
            async with self._pool.acquire() as conn:
                for stmt in [s.strip() for s in self._ddl().split(";") if s.strip()]:
                    await conn.execute(stmt)
            self._ensured = True


# =============================================================================
# PostgresProposalStore
# =============================================================================


class PostgresProposalStore(_PostgresTable, ProposalStore):
    TABLE_NAME = "decision_proposals"

    def _ddl(self) -> str:
        return f'''
        CREATE TABLE IF NOT EXISTS "{self._table}" (
            decision_id TEXT PRIMARY KEY,
            tenant_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            decision_type TEXT NOT NULL,
            proposal_fingerprint TEXT NOT NULL,
            body JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS "{self._table}_account_idx" ON "{self._table}" (tenant_id, account_id, created_at DESC)
        '''

    async def create(self, proposal: DecisionProposal) -> None:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                f'''
                INSERT INTO "{self._table}" (decision_id, tenant_id, account_id, decision_type, proposal_fingerprint, body)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                ON CONFLICT (decision_id) DO NOTHING
                ''',
                proposal.decision_id,
                proposal.tenant_id,
                proposal.account_id,
                proposal.decision_type.value,
                proposal.proposal_fingerprint,
                json.dumps(proposal.to_dict()),
            )
        if result.endswith(" 0"):
            raise AlreadyExistsError(
                f"Proposal already exists: {proposal.decision_id}",
                context=ErrorContext(tenant_id=proposal.tenant_id, account_id=proposal.account_id, operation="create_proposal"),
            )

    async def get_proposal(self, decision_id: str, tenant_id: str) -> DecisionProposal | None:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f'SELECT body FROM "{self._table}" WHERE decision_id = $1 AND tenant_id = $2',
                decision_id,
                tenant_id,
            )
        if row is None:
            return None
        return DecisionProposal.from_dict(_load_json(row["body"]))

    async def list_for_account(self, tenant_id: str, account_id: str, limit: int = 50) -> list[DecisionProposal]:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT body FROM "{self._table}"
                WHERE tenant_id = $1 AND account_id = $2
                ORDER BY created_at DESC
                LIMIT $3
                ''',
                tenant_id,
                account_id,
                limit,
            )
        return [DecisionProposal.from_dict(_load_json(r["body"])) for r in rows]


# =============================================================================
# PostgresActionIntentStore
# =============================================================================


class PostgresActionIntentStore(_PostgresTable, ActionIntentStore):
    TABLE_NAME = "action_intents"

    def _ddl(self) -> str:
        return f'''
        CREATE TABLE IF NOT EXISTS "{self._table}" (
            tenant_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            action_intent_id TEXT NOT NULL,
            original_decision_id TEXT NOT NULL,
            supersedes_action_intent_id TEXT,
            expires_at TIMESTAMPTZ NOT NULL,
            body JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (tenant_id, account_id, action_intent_id)
        );
        CREATE INDEX IF NOT EXISTS "{self._table}_decision_idx" ON "{self._table}" (original_decision_id)
        '''

    async def create(self, intent: ActionIntent) -> None:
        validate_provenance(intent)
        await self._ensure_table()
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(
                    f'''
                    INSERT INTO "{self._table}" (
                        tenant_id, account_id, action_intent_id, original_decision_id,
                        supersedes_action_intent_id, expires_at, body
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
                    ''',
                    intent.tenant_id,
                    intent.account_id,
                    intent.action_intent_id,
                    intent.original_decision_id,
                    intent.supersedes_action_intent_id,
                    datetime.fromtimestamp(intent.expires_at_epoch, tz=timezone.utc),
                    json.dumps(intent.to_dict()),
                )
        except asyncpg.UniqueViolationError as e:
            raise AlreadyExistsError(f"Action intent already exists: {intent.action_intent_id}", cause=e) from e

    async def get_intent(self, action_intent_id: str, tenant_id: str, account_id: str) -> ActionIntent | None:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                SELECT body FROM "{self._table}"
                WHERE tenant_id = $1 AND account_id = $2 AND action_intent_id = $3
                ''',
                tenant_id,
                account_id,
                action_intent_id,
            )
        return ActionIntent.from_dict(_load_json(row["body"])) if row else None


# =============================================================================
# PostgresBudgetStore
# =============================================================================


class PostgresBudgetStore(_PostgresTable, BudgetStore):
    TABLE_NAME = "decision_budgets"

    def _ddl(self) -> str:
        return f'''
        CREATE TABLE IF NOT EXISTS "{self._table}" (
            tenant_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            daily_decisions_remaining INTEGER NOT NULL,
            monthly_cost_remaining INTEGER NOT NULL,
            last_reset_date TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (tenant_id, account_id)
        )
        '''

    @staticmethod
    def _row_to_budget(row: Any) -> AccountBudget:
        return AccountBudget.from_dict(dict(row))

    async def get_or_create(self, initial: AccountBudget) -> AccountBudget:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            await conn.execute(
                f'''
                INSERT INTO "{self._table}" (
                    tenant_id, account_id, daily_decisions_remaining,
                    monthly_cost_remaining, last_reset_date, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (tenant_id, account_id) DO NOTHING
                ''',
                initial.tenant_id,
                initial.account_id,
                initial.daily_decisions_remaining,
                initial.monthly_cost_remaining,
                initial.last_reset_date,
                initial.updated_at,
            )
            row = await conn.fetchrow(
                f'SELECT * FROM "{self._table}" WHERE tenant_id = $1 AND account_id = $2',
                initial.tenant_id,
                initial.account_id,
            )
        return self._row_to_budget(row)

    async def decrement(self, tenant_id: str, account_id: str, cost: int, updated_at: str) -> AccountBudget | None:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                UPDATE "{self._table}"
                SET daily_decisions_remaining = daily_decisions_remaining - $3,
                    monthly_cost_remaining = monthly_cost_remaining - $3,
                    updated_at = $4
                WHERE tenant_id = $1 AND account_id = $2
                  AND daily_decisions_remaining >= $3
                  AND monthly_cost_remaining >= $3
                RETURNING *
                ''',
                tenant_id,
                account_id,
                cost,
                updated_at,
            )
        return self._row_to_budget(row) if row else None

    async def reset_daily(
        self,
        tenant_id: str,
        account_id: str,
        daily_decisions: int,
        reset_date: str,
        updated_at: str,
    ) -> None:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            await conn.execute(
                f'''
                UPDATE "{self._table}"
                SET daily_decisions_remaining = $3, last_reset_date = $4, updated_at = $5
                WHERE tenant_id = $1 AND account_id = $2
                ''',
                tenant_id,
                account_id,
                daily_decisions,
                reset_date,
                updated_at,
            )


# =============================================================================
# PostgresDecisionLedger
# =============================================================================


class PostgresDecisionLedger(_PostgresTable, DecisionLedger):
    TABLE_NAME = "decision_ledger"

    def _ddl(self) -> str:
        return f'''
        CREATE TABLE IF NOT EXISTS "{self._table}" (
            seq BIGSERIAL PRIMARY KEY,
            entry_id TEXT NOT NULL UNIQUE,
            event_type TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            account_id TEXT NOT NULL,
            trace_id TEXT,
            evaluation_id TEXT,
            decision_id TEXT,
            timestamp DOUBLE PRECISION NOT NULL,
            data JSONB NOT NULL DEFAULT '{{}}'::jsonb
        );
        CREATE INDEX IF NOT EXISTS "{self._table}_account_idx" ON "{self._table}" (tenant_id, account_id, seq DESC);
        CREATE INDEX IF NOT EXISTS "{self._table}_evaluation_idx" ON "{self._table}" (evaluation_id)
        '''

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            await conn.execute(
                f'''
                INSERT INTO "{self._table}" (
                    entry_id, event_type, tenant_id, account_id, trace_id,
                    evaluation_id, decision_id, timestamp, data
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb)
                ON CONFLICT (entry_id) DO NOTHING
                ''',
                entry.entry_id,
                entry.event_type.value,
                entry.tenant_id,
                entry.account_id,
                entry.trace_id,
                entry.evaluation_id,
                entry.decision_id,
                entry.timestamp,
                json.dumps(entry.data, default=str),
            )
        return entry

    async def query(
        self,
        tenant_id: str,
        account_id: str | None = None,
        event_type: LedgerEventType | None = None,
        evaluation_id: str | None = None,
        limit: int = 50,
    ) -> list[LedgerEntry]:
        await self._ensure_table()
        clauses = ["tenant_id = $1"]
        params: list[Any] = [tenant_id]
        if account_id is not None:
            params.append(account_id)
            clauses.append(f"account_id = ${len(params)}")
        if event_type is not None:
            params.append(event_type.value)
            clauses.append(f"event_type = ${len(params)}")
        if evaluation_id is not None:
            params.append(evaluation_id)
            clauses.append(f"evaluation_id = ${len(params)}")
        params.append(limit)

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT * FROM "{self._table}"
                WHERE {" AND ".join(clauses)}
                ORDER BY seq DESC
                LIMIT ${len(params)}
                ''',
                *params,
            )
        return [
            LedgerEntry(
                entry_id=r["entry_id"],
                event_type=LedgerEventType(r["event_type"]),
                tenant_id=r["tenant_id"],
                account_id=r["account_id"],
                trace_id=r["trace_id"],
                evaluation_id=r["evaluation_id"],
                decision_id=r["decision_id"],
                timestamp=r["timestamp"],
                data=_load_json(r["data"]) or {},
            )
            for r in rows
        ]


__all__ = [
    "PostgresProposalStore",
    "PostgresActionIntentStore",
    "PostgresBudgetStore",
    "PostgresDecisionLedger",
]
