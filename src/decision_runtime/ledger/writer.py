"""
Ledger implementations.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict

from .types import EvaluationState, EvaluationStatus, LedgerEntry, LedgerEventType

_TERMINAL_STATES: dict[LedgerEventType, EvaluationState] = {
    LedgerEventType.DECISION_PROPOSED: EvaluationState.COMPLETED,
    LedgerEventType.EVALUATION_SKIPPED: EvaluationState.SKIPPED,
    LedgerEventType.EVALUATION_FAILED: EvaluationState.FAILED,
}


class DecisionLedger(ABC):
    """Abstract interface for the append-only decision ledger."""

    @abstractmethod
    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    @abstractmethod
    async def query(
        self,
        tenant_id: str,
        account_id: str | None = None,
        event_type: LedgerEventType | None = None,
        evaluation_id: str | None = None,
        limit: int = 50,
    ) -> list[LedgerEntry]:
        """Entries matching the filters, newest first."""
        ...

    async def get_evaluation_status(
        self,
        tenant_id: str,
        account_id: str,
        evaluation_id: str,
    ) -> EvaluationStatus | None:
        """Status of one evaluation, or None when nothing was recorded for it."""
        entries = await self.query(tenant_id, account_id=account_id, evaluation_id=evaluation_id, limit=100)
        if not entries:
            return None
        for entry in entries:
            state = _TERMINAL_STATES.get(entry.event_type)
            if state is not None:
                return EvaluationStatus(
                    evaluation_id=evaluation_id,
                    status=state,
                    decision_id=entry.decision_id,
                    reason=entry.data.get("reason"),
                    updated_at=entry.timestamp,
                )
        latest = entries[0]
        return EvaluationStatus(
            evaluation_id=evaluation_id,
            status=EvaluationState.PENDING,
            updated_at=latest.timestamp,
        )

    async def get_account_decisions(self, tenant_id: str, account_id: str, limit: int = 50) -> list[LedgerEntry]:
        return await self.query(
            tenant_id,
            account_id=account_id,
            event_type=LedgerEventType.DECISION_PROPOSED,
            limit=limit,
        )


class InMemoryDecisionLedger(DecisionLedger):
    """In-memory ledger, indexed by tenant/account. Suitable for tests and local runs."""

    def __init__(self, max_entries: int = 100000):
        self._entries: list[LedgerEntry] = []
        self._by_account: dict[tuple[str, str], list[LedgerEntry]] = defaultdict(list)
        self._max_entries = max_entries
        self._lock = asyncio.Lock()

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        async with self._lock:
            if len(self._entries) >= self._max_entries:
                self._entries = self._entries[-self._max_entries // 2:]
                self._rebuild_index()
            self._entries.append(entry)
            self._by_account[(entry.tenant_id, entry.account_id)].append(entry)
            return entry

    async def query(
        self,
        tenant_id: str,
        account_id: str | None = None,
        event_type: LedgerEventType | None = None,
        evaluation_id: str | None = None,
        limit: int = 50,
    ) -> list[LedgerEntry]:
        async with self._lock:
            if account_id is not None:
                entries = list(self._by_account.get((tenant_id, account_id), []))
            else:
                entries = [e for e in self._entries if e.tenant_id == tenant_id]

            if event_type is not None:
                entries = [e for e in entries if e.event_type == event_type]
            if evaluation_id is not None:
                entries = [e for e in entries if e.evaluation_id == evaluation_id]

            # Appends are ordered, so reversing gives newest first even on equal timestamps.
            entries.reverse()
            return entries[:limit]

    def _rebuild_index(self) -> None:
        self._by_account.clear()
        for entry in self._entries:
            self._by_account[(entry.tenant_id, entry.account_id)].append(entry)


__all__ = [
    "DecisionLedger",
    "InMemoryDecisionLedger",
]
