"""
Shared test fixtures for the decision runtime tests.

This module provides:
- A fixed, advanceable clock
- In-memory stores wired to that clock
- A read-model fixture provider seeded with one account
- A scripted fake model client
"""

from __future__ import annotations

import pytest

from decision_runtime.admission import InMemoryIdempotencyStore, InMemoryRunStateStore, InMemoryScheduler
from decision_runtime.collaborators import InMemoryReadModels
from decision_runtime.decisions import (
    BudgetService,
    InMemoryActionIntentStore,
    InMemoryBudgetStore,
    InMemoryProposalStore,
)
from decision_runtime.events import InMemoryEventBus
from decision_runtime.ledger import InMemoryDecisionLedger

from tests._decision_testkit import FixedClock, ScriptedModelClient, make_body, seed_account


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def idempotency(clock):
    return InMemoryIdempotencyStore(clock=clock)


@pytest.fixture
def run_state(clock):
    return InMemoryRunStateStore(clock=clock)


@pytest.fixture
def scheduler():
    return InMemoryScheduler()


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def budget(clock):
    return BudgetService(InMemoryBudgetStore(), clock=clock)


@pytest.fixture
def proposals():
    return InMemoryProposalStore()


@pytest.fixture
def intents():
    return InMemoryActionIntentStore()


@pytest.fixture
def ledger():
    return InMemoryDecisionLedger()


@pytest.fixture
def read_models():
    models = InMemoryReadModels()
    seed_account(models)
    return models


@pytest.fixture
def model_client():
    return ScriptedModelClient(make_body())
