"""
Admission control for decision runs.

This module provides:
- Idempotent pipeline entry (conditional reservations with a TTL)
- Per-account run state with an atomic admission lock
- A pure cost gate evaluated before the lock
- Bounded deferred-retry scheduling
- The RUN_DECISION admission pipeline tying these together
"""

from .idempotency import (
    DEFAULT_IDEMPOTENCY_TTL_SECONDS,
    ReserveResult,
    IdempotencyRecord,
    idempotency_record_key,
    retry_idempotency_key,
    IdempotencyStore,
    InMemoryIdempotencyStore,
)
from .run_state import (
    HOUR_SECONDS,
    RunState,
    AdmissionResult,
    run_state_key,
    evaluate_admission,
    RunStateStore,
    InMemoryRunStateStore,
)
from .cost_gate import (
    CostGateResult,
    CostGateReason,
    CostGateInput,
    CostGateDecision,
    evaluate_cost_gate,
)
from .scheduler import (
    OneTimeSchedule,
    schedule_name,
    Scheduler,
    InMemoryScheduler,
    DeferredRetryScheduler,
)
from .pipeline import (
    AdmissionStatus,
    AdmissionOutcome,
    parse_trigger,
    AdmissionPipeline,
)

__all__ = [
    "DEFAULT_IDEMPOTENCY_TTL_SECONDS",
    "ReserveResult",
    "IdempotencyRecord",
    "idempotency_record_key",
    "retry_idempotency_key",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "HOUR_SECONDS",
    "RunState",
    "AdmissionResult",
    "run_state_key",
    "evaluate_admission",
    "RunStateStore",
    "InMemoryRunStateStore",
    "CostGateResult",
    "CostGateReason",
    "CostGateInput",
    "CostGateDecision",
    "evaluate_cost_gate",
    "OneTimeSchedule",
    "schedule_name",
    "Scheduler",
    "InMemoryScheduler",
    "DeferredRetryScheduler",
    "AdmissionStatus",
    "AdmissionOutcome",
    "parse_trigger",
    "AdmissionPipeline",
]
