"""
Decision synthesis, policy and approval.

This module provides:
- Bounded context assembly from posture, signal, graph and tenant read-models
- Proposal synthesis through a generative model with strict validation
- A deterministic policy gate over proposed actions
- Per-account decision budgets
- Proposal and action intent storage with the human approval workflow
- The end-to-end evaluation cycle
"""

from .types import (
    DecisionType,
    ActionType,
    RiskTier,
    EntityType,
    PolicyEvaluation,
    ActionPermission,
    ACTION_TYPE_RISK_TIERS,
    ACTION_TYPE_EXPIRY_DAYS,
    DEFAULT_EXPIRY_DAYS,
    default_permission,
    default_action_permissions,
    expiry_days_for,
    TargetEntity,
    ActionProposal,
    DecisionProposal,
    PolicyContext,
    PolicyEvaluationResult,
    ExecutionPolicy,
    generate_action_intent_id,
    ActionIntent,
)
from .budget import (
    BudgetReason,
    AccountBudget,
    BudgetCheck,
    BudgetStore,
    InMemoryBudgetStore,
    BudgetService,
)
from .context_assembler import (
    LifecycleState,
    DecisionContext,
    infer_lifecycle_state,
    build_policy_context,
    ContextAssembler,
)
from .schema import (
    ACTION_PROPOSAL_SCHEMA,
    PROPOSAL_BODY_SCHEMA,
    proposal_body_errors,
    validate_proposal_body,
)
from .model_client import ModelReply, ModelClient, OpenAIModelClient
from .synthesizer import (
    SYSTEM_PROMPT,
    build_prompt,
    parse_model_output,
    normalize_proposal_body,
    proposal_fingerprint,
    generate_decision_id,
    action_ref_for,
    ProposalSynthesizer,
)
from .policy_gate import MINIMAL_CONFIDENCE_FLOOR, evaluate_action, evaluate_decision_proposal
from .proposal_store import ProposalStore, InMemoryProposalStore
from .intents import validate_provenance, ActionIntentStore, InMemoryActionIntentStore
from .approval import (
    EDITABLE_FIELDS,
    LOCKED_FIELDS,
    APPROVAL_SOURCE_HUMAN,
    ActionRejection,
    validate_edits,
    ApprovalWorkflow,
)
from .evaluation import (
    EvaluationOutcome,
    EvaluationResult,
    generate_evaluation_id,
    DecisionEvaluator,
)

__all__ = [
    # Types
    "DecisionType",
    "ActionType",
    "RiskTier",
    "EntityType",
    "PolicyEvaluation",
    "ActionPermission",
    "ACTION_TYPE_RISK_TIERS",
    "ACTION_TYPE_EXPIRY_DAYS",
    "DEFAULT_EXPIRY_DAYS",
    "default_permission",
    "default_action_permissions",
    "expiry_days_for",
    "TargetEntity",
    "ActionProposal",
    "DecisionProposal",
    "PolicyContext",
    "PolicyEvaluationResult",
    "ExecutionPolicy",
    "generate_action_intent_id",
    "ActionIntent",
    # Budget
    "BudgetReason",
    "AccountBudget",
    "BudgetCheck",
    "BudgetStore",
    "InMemoryBudgetStore",
    "BudgetService",
    # Context
    "LifecycleState",
    "DecisionContext",
    "infer_lifecycle_state",
    "build_policy_context",
    "ContextAssembler",
    # Schema
    "ACTION_PROPOSAL_SCHEMA",
    "PROPOSAL_BODY_SCHEMA",
    "proposal_body_errors",
    "validate_proposal_body",
    # Synthesis
    "ModelReply",
    "ModelClient",
    "OpenAIModelClient",
    "SYSTEM_PROMPT",
    "build_prompt",
    "parse_model_output",
    "normalize_proposal_body",
    "proposal_fingerprint",
    "generate_decision_id",
    "action_ref_for",
    "ProposalSynthesizer",
    # Policy
    "MINIMAL_CONFIDENCE_FLOOR",
    "evaluate_action",
    "evaluate_decision_proposal",
    # Storage and approval
    "ProposalStore",
    "InMemoryProposalStore",
    "validate_provenance",
    "ActionIntentStore",
    "InMemoryActionIntentStore",
    "EDITABLE_FIELDS",
    "LOCKED_FIELDS",
    "APPROVAL_SOURCE_HUMAN",
    "ActionRejection",
    "validate_edits",
    "ApprovalWorkflow",
    # Evaluation
    "EvaluationOutcome",
    "EvaluationResult",
    "generate_evaluation_id",
    "DecisionEvaluator",
]
