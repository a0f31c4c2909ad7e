"""
Top-level package for the decision runtime.

Admission control and policy gating for autonomous account decisions:
triggers are admitted idempotently through a cost gate and an atomic
admission lock, proposals are synthesized by a generative model and checked
by a deterministic policy gate, and approved actions become immutable
action intents.
"""

from .config import (
    AdmissionConfig,
    BudgetConfig,
    ContextConfig,
    LoggingConfig,
    ModelConfig,
    RuntimeConfig,
    load_env,
)
from .errors import (
    ErrorCode,
    ErrorKind,
    DecisionRuntimeError,
    ValidationError,
    NotFoundError,
    SchemaViolation,
    TransientError,
    PermanentError,
    ContextUnavailableError,
    BudgetInsufficientError,
    ProvenanceError,
    AlreadyExistsError,
)
from .logging import get_logger, setup_logging
from .events import DecisionEvent, DecisionEventType, EventBus, InMemoryEventBus, EventRouter
from .triggers import RunTriggerType, EvaluationTriggerType, TriggerRegistry, TriggerEvaluator
from .admission import (
    AdmissionPipeline,
    AdmissionOutcome,
    AdmissionStatus,
    DeferredRetryScheduler,
    evaluate_cost_gate,
)
from .decisions import (
    ApprovalWorkflow,
    BudgetService,
    ContextAssembler,
    DecisionEvaluator,
    ProposalSynthesizer,
    evaluate_action,
    evaluate_decision_proposal,
)
from .ledger import DecisionLedger, InMemoryDecisionLedger

__version__ = "0.1.0"

__all__ = [
    # Config
    "AdmissionConfig",
    "BudgetConfig",
    "ContextConfig",
    "LoggingConfig",
    "ModelConfig",
    "RuntimeConfig",
    "load_env",
    # Errors
    "ErrorCode",
    "ErrorKind",
    "DecisionRuntimeError",
    "ValidationError",
    "NotFoundError",
    "SchemaViolation",
    "TransientError",
    "PermanentError",
    "ContextUnavailableError",
    "BudgetInsufficientError",
    "ProvenanceError",
    "AlreadyExistsError",
    # Logging
    "get_logger",
    "setup_logging",
    # Events
    "DecisionEvent",
    "DecisionEventType",
    "EventBus",
    "InMemoryEventBus",
    "EventRouter",
    # Triggers and admission
    "RunTriggerType",
    "EvaluationTriggerType",
    "TriggerRegistry",
    "TriggerEvaluator",
    "AdmissionPipeline",
    "AdmissionOutcome",
    "AdmissionStatus",
    "DeferredRetryScheduler",
    "evaluate_cost_gate",
    # Decisions
    "ApprovalWorkflow",
    "BudgetService",
    "ContextAssembler",
    "DecisionEvaluator",
    "ProposalSynthesizer",
    "evaluate_action",
    "evaluate_decision_proposal",
    # Ledger
    "DecisionLedger",
    "InMemoryDecisionLedger",
    "__version__",
]
