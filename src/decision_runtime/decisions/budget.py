"""
Per-account decision budget.

Each account carries a daily decision-count allowance and a monthly cost
allowance, initialized lazily on first read. ``consume_budget`` is a single
conditional decrement of both counters; a failed condition raises
``BudgetInsufficientError`` because it follows a successful check and so
indicates an anomaly, not normal control flow.

Daily reset is an explicit per-account operation (see ``reset_daily_budget``).
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from ..config import BudgetConfig
from ..errors import BudgetInsufficientError, ErrorContext
from ..logging import get_logger

logger = get_logger("decision_runtime.budget")


class BudgetReason(str, Enum):
    BUDGET_AVAILABLE = "BUDGET_AVAILABLE"
    DAILY_BUDGET_EXCEEDED = "DAILY_BUDGET_EXCEEDED"
    MONTHLY_BUDGET_EXCEEDED = "MONTHLY_BUDGET_EXCEEDED"


@dataclass(frozen=True)
class AccountBudget:
    tenant_id: str
    account_id: str
    daily_decisions_remaining: int
    monthly_cost_remaining: int
    last_reset_date: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "daily_decisions_remaining": self.daily_decisions_remaining,
            "monthly_cost_remaining": self.monthly_cost_remaining,
            "last_reset_date": self.last_reset_date,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AccountBudget:
        return cls(
            tenant_id=str(data["tenant_id"]),
            account_id=str(data["account_id"]),
            daily_decisions_remaining=int(data["daily_decisions_remaining"]),
            monthly_cost_remaining=int(data["monthly_cost_remaining"]),
            last_reset_date=str(data["last_reset_date"]),
            updated_at=str(data["updated_at"]),
        )


@dataclass(frozen=True)
class BudgetCheck:
    allowed: bool
    reason: BudgetReason
    budget_remaining: AccountBudget

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "budget_remaining": self.budget_remaining.to_dict(),
        }


class BudgetStore(ABC):
    """Keyed budget storage with atomic conditional operations."""

    @abstractmethod
    async def get_or_create(self, initial: AccountBudget) -> AccountBudget:
        """Return the stored budget, inserting ``initial`` if absent."""
        ...

    @abstractmethod
    async def decrement(self, tenant_id: str, account_id: str, cost: int, updated_at: str) -> AccountBudget | None:
        """Decrement both counters iff each is ``>= cost``. None when the condition fails."""
        ...

    @abstractmethod
    async def reset_daily(
        self,
        tenant_id: str,
        account_id: str,
        daily_decisions: int,
        reset_date: str,
        updated_at: str,
    ) -> None:
        ...


class InMemoryBudgetStore(BudgetStore):
    def __init__(self) -> None:
        self._budgets: dict[tuple[str, str], AccountBudget] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, initial: AccountBudget) -> AccountBudget:
        async with self._lock:
            key = (initial.tenant_id, initial.account_id)
            return self._budgets.setdefault(key, initial)

    async def decrement(self, tenant_id: str, account_id: str, cost: int, updated_at: str) -> AccountBudget | None:
        async with self._lock:
            budget = self._budgets.get((tenant_id, account_id))
            if budget is None:
                return None
            if budget.daily_decisions_remaining < cost or budget.monthly_cost_remaining < cost:
                return None
            budget = replace(
                budget,
                daily_decisions_remaining=budget.daily_decisions_remaining - cost,
                monthly_cost_remaining=budget.monthly_cost_remaining - cost,
                updated_at=updated_at,
            )
            self._budgets[(tenant_id, account_id)] = budget
            return budget

    async def reset_daily(
        self,
        tenant_id: str,
        account_id: str,
        daily_decisions: int,
        reset_date: str,
        updated_at: str,
    ) -> None:
        async with self._lock:
            budget = self._budgets.get((tenant_id, account_id))
            if budget is None:
                return
            self._budgets[(tenant_id, account_id)] = replace(
                budget,
                daily_decisions_remaining=daily_decisions,
                last_reset_date=reset_date,
                updated_at=updated_at,
            )


class BudgetService:
    """Budget checks and atomic consumption for decision evaluations."""

    def __init__(
        self,
        store: BudgetStore,
        config: BudgetConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._config = config or BudgetConfig()
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def get_budget(self, tenant_id: str, account_id: str) -> AccountBudget:
        now = self._now()
        initial = AccountBudget(
            tenant_id=tenant_id,
            account_id=account_id,
            daily_decisions_remaining=self._config.daily_decisions,
            monthly_cost_remaining=self._config.monthly_cost,
            last_reset_date=now.date().isoformat(),
            updated_at=now.isoformat(),
        )
        return await self._store.get_or_create(initial)

    async def can_evaluate_decision(self, tenant_id: str, account_id: str) -> BudgetCheck:
        budget = await self.get_budget(tenant_id, account_id)
        if budget.daily_decisions_remaining <= 0:
            return BudgetCheck(False, BudgetReason.DAILY_BUDGET_EXCEEDED, budget)
        if budget.monthly_cost_remaining <= 0:
            return BudgetCheck(False, BudgetReason.MONTHLY_BUDGET_EXCEEDED, budget)
        return BudgetCheck(True, BudgetReason.BUDGET_AVAILABLE, budget)

    async def consume_budget(self, tenant_id: str, account_id: str, cost: int | None = None) -> AccountBudget:
        cost = self._config.decision_cost if cost is None else cost
        await self.get_budget(tenant_id, account_id)
        updated = await self._store.decrement(tenant_id, account_id, cost, self._now().isoformat())
        if updated is None:
            raise BudgetInsufficientError(
                f"Insufficient budget to consume {cost}",
                cost=cost,
                context=ErrorContext(tenant_id=tenant_id, account_id=account_id, operation="consume_budget"),
            )
        logger.info(
            "Budget consumed",
            tenant_id=tenant_id,
            account_id=account_id,
            cost=cost,
            daily_decisions_remaining=updated.daily_decisions_remaining,
            monthly_cost_remaining=updated.monthly_cost_remaining,
        )
        return updated

    async def reset_daily_budget(self, tenant_id: str, account_id: str) -> None:
        now = self._now()
        await self.get_budget(tenant_id, account_id)
        await self._store.reset_daily(
            tenant_id,
            account_id,
            self._config.daily_decisions,
            now.date().isoformat(),
            now.isoformat(),
        )
        logger.info("Daily budget reset", tenant_id=tenant_id, account_id=account_id)


__all__ = [
    "BudgetReason",
    "AccountBudget",
    "BudgetCheck",
    "BudgetStore",
    "InMemoryBudgetStore",
    "BudgetService",
]
