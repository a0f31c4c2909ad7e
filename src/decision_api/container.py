from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable

from decision_runtime.admission import (
    AdmissionPipeline,
    DeferredRetryScheduler,
    IdempotencyStore,
    InMemoryIdempotencyStore,
    InMemoryRunStateStore,
    InMemoryScheduler,
    RunStateStore,
    Scheduler,
)
from decision_runtime.collaborators import InMemoryReadModels
from decision_runtime.config import RuntimeConfig
from decision_runtime.decisions import (
    ActionIntentStore,
    ApprovalWorkflow,
    BudgetService,
    BudgetStore,
    ContextAssembler,
    DecisionEvaluator,
    InMemoryActionIntentStore,
    InMemoryBudgetStore,
    InMemoryProposalStore,
    ModelClient,
    ModelReply,
    OpenAIModelClient,
    ProposalStore,
    ProposalSynthesizer,
)
from decision_runtime.events import EventBus, InMemoryEventBus
from decision_runtime.ledger import DecisionLedger, InMemoryDecisionLedger
from decision_runtime.logging import get_logger
from decision_runtime.storage import (
    PostgresActionIntentStore,
    PostgresBudgetStore,
    PostgresDecisionLedger,
    PostgresProposalStore,
    RedisIdempotencyStore,
    RedisRunStateStore,
    RedisScheduler,
    StoreConnections,
)
from decision_runtime.triggers import TriggerEvaluator, TriggerRegistry

from .settings import Settings

logger = get_logger("decision_api.container")


@dataclass
class DecisionContainer:
    settings: Settings
    config: RuntimeConfig
    event_bus: EventBus
    read_models: Any
    idempotency: IdempotencyStore
    run_state: RunStateStore
    scheduler: Scheduler
    deferred_retry: DeferredRetryScheduler
    budget: BudgetService
    proposals: ProposalStore
    intents: ActionIntentStore
    ledger: DecisionLedger
    model_client: ModelClient
    pipeline: AdmissionPipeline
    trigger_evaluator: TriggerEvaluator
    evaluator: DecisionEvaluator
    approval: ApprovalWorkflow
    connections: StoreConnections | None = None

    async def health(self) -> dict[str, Any]:
        if self.connections is None:
            return {"ok": True, "storage_backend": "memory"}
        status = await self.connections.health_check()
        status["storage_backend"] = self.settings.storage_backend
        return status

    async def close(self) -> None:
        await self.event_bus.close()
        close_model = getattr(self.model_client, "close", None)
        if close_model is not None:
            await close_model()
        if self.connections is not None:
            await self.connections.close()


class _MockModelClient:
    """Answers every prompt with a no-action proposal. Selected with DECISION_MODEL_MODE=mock."""

    async def complete(self, prompt: str, system: str) -> ModelReply:
        body = {
            "decision_type": "NO_ACTION_RECOMMENDED",
            "decision_reason_codes": ["MOCK_MODEL"],
            "summary": "(mock) no action recommended",
            "decision_version": "v1",
            "schema_version": "v1",
            "actions": [],
        }
        return ModelReply(text=json.dumps(body), model="mock")


def _build_model_client(settings: Settings, config: RuntimeConfig) -> ModelClient:
    if settings.model_mode == "mock":
        return _MockModelClient()
    return OpenAIModelClient(config.model)


async def build_container(
    settings: Settings,
    config: RuntimeConfig | None = None,
    *,
    read_models: Any = None,
    model_client: ModelClient | None = None,
    registry: TriggerRegistry | None = None,
    clock: Callable[[], float] = time.time,
) -> DecisionContainer:
    """
    Wire every service for one process.

    ``read_models`` must implement the posture, signal, tenant config,
    graph, materialization status and saturation provider protocols. An
    empty ``InMemoryReadModels`` is used when none is given.
    """
    config = config or RuntimeConfig.from_env()
    read_models = read_models if read_models is not None else InMemoryReadModels()
    model_client = model_client or _build_model_client(settings, config)
    event_bus = InMemoryEventBus()
    connections: StoreConnections | None = None

    if settings.storage_backend == "postgres":
        connections = StoreConnections(
            postgres_dsn=settings.pg_dsn,
            redis_url=settings.redis_url,
            pool_min_size=settings.pg_pool_min_size,
            pool_max_size=settings.pg_pool_max_size,
        )
        await connections.connect()
        idempotency: IdempotencyStore = RedisIdempotencyStore(
            connections.redis,
            ttl_seconds=config.admission.idempotency_ttl_seconds,
            prefix=settings.key_prefix,
        )
        run_state: RunStateStore = RedisRunStateStore(connections.redis, prefix=settings.key_prefix, clock=clock)
        scheduler: Scheduler = RedisScheduler(connections.redis, prefix=settings.key_prefix)
        budget_store: BudgetStore = PostgresBudgetStore(connections.pool)
        proposals: ProposalStore = PostgresProposalStore(connections.pool)
        intents: ActionIntentStore = PostgresActionIntentStore(connections.pool)
        ledger: DecisionLedger = PostgresDecisionLedger(connections.pool)
    else:
        idempotency = InMemoryIdempotencyStore(ttl_seconds=config.admission.idempotency_ttl_seconds, clock=clock)
        run_state = InMemoryRunStateStore(clock=clock)
        scheduler = InMemoryScheduler()
        budget_store = InMemoryBudgetStore()
        proposals = InMemoryProposalStore()
        intents = InMemoryActionIntentStore()
        ledger = InMemoryDecisionLedger()

    budget = BudgetService(budget_store, config.budget, clock=clock)
    assembler = ContextAssembler(
        posture_provider=read_models,
        signal_provider=read_models,
        tenant_provider=read_models,
        graph_provider=read_models,
        config=config.context,
    )
    synthesizer = ProposalSynthesizer(model_client, config.model)

    container = DecisionContainer(
        settings=settings,
        config=config,
        event_bus=event_bus,
        read_models=read_models,
        idempotency=idempotency,
        run_state=run_state,
        scheduler=scheduler,
        deferred_retry=DeferredRetryScheduler(scheduler, clock=clock),
        budget=budget,
        proposals=proposals,
        intents=intents,
        ledger=ledger,
        model_client=model_client,
        pipeline=AdmissionPipeline(
            idempotency,
            run_state,
            event_bus,
            registry=registry,
            budget=budget,
            saturation=read_models,
            config=config.admission,
            clock=clock,
        ),
        trigger_evaluator=TriggerEvaluator(
            read_models,
            cooldown_seconds=config.admission.trigger_cooldown_seconds,
            clock=clock,
        ),
        evaluator=DecisionEvaluator(
            materialization=read_models,
            assembler=assembler,
            budget=budget,
            synthesizer=synthesizer,
            proposals=proposals,
            ledger=ledger,
            event_bus=event_bus,
        ),
        approval=ApprovalWorkflow(proposals, intents, ledger, event_bus, clock=clock),
        connections=connections,
    )
    logger.info(
        "Decision container built",
        storage_backend=settings.storage_backend,
        model_mode=settings.model_mode,
    )
    return container


__all__ = ["DecisionContainer", "build_container"]
