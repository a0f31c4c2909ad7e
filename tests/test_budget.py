"""
Tests for per-account decision budgets.
"""

import asyncio

import pytest

from decision_runtime.config import BudgetConfig
from decision_runtime.decisions import BudgetReason, BudgetService, InMemoryBudgetStore
from decision_runtime.errors import BudgetInsufficientError

from tests._decision_testkit import ACCOUNT, TENANT


class TestBudgetService:
    """Test lazy initialization, checks and atomic consumption."""

    @pytest.mark.asyncio
    async def test_lazy_initialization(self, budget):
        state = await budget.get_budget(TENANT, ACCOUNT)

        assert state.daily_decisions_remaining == 10
        assert state.monthly_cost_remaining == 100
        assert state.last_reset_date == "2023-11-14"

    @pytest.mark.asyncio
    async def test_check_allows_fresh_account(self, budget):
        check = await budget.can_evaluate_decision(TENANT, ACCOUNT)

        assert check.allowed is True
        assert check.reason == BudgetReason.BUDGET_AVAILABLE

    @pytest.mark.asyncio
    async def test_consume_decrements_both(self, budget):
        updated = await budget.consume_budget(TENANT, ACCOUNT)

        assert updated.daily_decisions_remaining == 9
        assert updated.monthly_cost_remaining == 99

    @pytest.mark.asyncio
    async def test_daily_exhaustion(self, clock):
        service = BudgetService(InMemoryBudgetStore(), BudgetConfig(daily_decisions=1), clock=clock)
        await service.consume_budget(TENANT, ACCOUNT)

        check = await service.can_evaluate_decision(TENANT, ACCOUNT)

        assert check.allowed is False
        assert check.reason == BudgetReason.DAILY_BUDGET_EXCEEDED
        assert check.budget_remaining.daily_decisions_remaining == 0

    @pytest.mark.asyncio
    async def test_monthly_exhaustion(self, clock):
        service = BudgetService(InMemoryBudgetStore(), BudgetConfig(monthly_cost=1), clock=clock)
        await service.consume_budget(TENANT, ACCOUNT)

        check = await service.can_evaluate_decision(TENANT, ACCOUNT)

        assert check.reason == BudgetReason.MONTHLY_BUDGET_EXCEEDED

    @pytest.mark.asyncio
    async def test_consume_without_budget_raises(self, clock):
        service = BudgetService(InMemoryBudgetStore(), BudgetConfig(daily_decisions=0), clock=clock)

        with pytest.raises(BudgetInsufficientError) as exc_info:
            await service.consume_budget(TENANT, ACCOUNT)

        assert exc_info.value.cost == 1

    @pytest.mark.asyncio
    async def test_concurrent_consumption_never_goes_negative(self, clock):
        service = BudgetService(InMemoryBudgetStore(), BudgetConfig(daily_decisions=3), clock=clock)

        results = await asyncio.gather(
            *(service.consume_budget(TENANT, ACCOUNT) for _ in range(5)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BudgetInsufficientError)]
        assert len(failures) == 2
        state = await service.get_budget(TENANT, ACCOUNT)
        assert state.daily_decisions_remaining == 0
        assert state.monthly_cost_remaining == 97

    @pytest.mark.asyncio
    async def test_reset_restores_daily_only(self, budget, clock):
        await budget.consume_budget(TENANT, ACCOUNT)
        clock.advance(86400)

        await budget.reset_daily_budget(TENANT, ACCOUNT)

        state = await budget.get_budget(TENANT, ACCOUNT)
        assert state.daily_decisions_remaining == 10
        assert state.monthly_cost_remaining == 99
        assert state.last_reset_date == "2023-11-15"

    @pytest.mark.asyncio
    async def test_accounts_are_isolated(self, budget):
        await budget.consume_budget(TENANT, ACCOUNT)

        other = await budget.get_budget(TENANT, "acct-2")

        assert other.daily_decisions_remaining == 10
