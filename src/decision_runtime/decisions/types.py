"""
Decision domain types.

This module defines:
- The closed ``ActionType`` enum with its static policy tier mapping
- Decision proposals and their actions
- Policy evaluation results
- Action intents created by approval
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class DecisionType(str, Enum):
    PROPOSE_ACTIONS = "PROPOSE_ACTIONS"
    NO_ACTION_RECOMMENDED = "NO_ACTION_RECOMMENDED"
    BLOCKED_BY_UNKNOWNS = "BLOCKED_BY_UNKNOWNS"


class ActionType(str, Enum):
    """Closed set of actions a proposal may contain."""
    # Outreach
    REQUEST_RENEWAL_MEETING = "REQUEST_RENEWAL_MEETING"
    REQUEST_DISCOVERY_CALL = "REQUEST_DISCOVERY_CALL"
    REQUEST_STAKEHOLDER_INTRO = "REQUEST_STAKEHOLDER_INTRO"
    # CRM writes
    UPDATE_OPPORTUNITY_STAGE = "UPDATE_OPPORTUNITY_STAGE"
    CREATE_OPPORTUNITY = "CREATE_OPPORTUNITY"
    UPDATE_ACCOUNT_FIELDS = "UPDATE_ACCOUNT_FIELDS"
    # Internal
    CREATE_INTERNAL_NOTE = "CREATE_INTERNAL_NOTE"
    CREATE_INTERNAL_TASK = "CREATE_INTERNAL_TASK"
    FLAG_FOR_REVIEW = "FLAG_FOR_REVIEW"
    # Research
    FETCH_ACCOUNT_NEWS = "FETCH_ACCOUNT_NEWS"
    ANALYZE_USAGE_PATTERNS = "ANALYZE_USAGE_PATTERNS"


class RiskTier(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    MINIMAL = "MINIMAL"


class EntityType(str, Enum):
    ACCOUNT = "ACCOUNT"
    CONTACT = "CONTACT"
    OPPORTUNITY = "OPPORTUNITY"
    DEAL = "DEAL"
    ENGAGEMENT = "ENGAGEMENT"


class PolicyEvaluation(str, Enum):
    ALLOWED = "ALLOWED"
    BLOCKED = "BLOCKED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"


@dataclass(frozen=True)
class ActionPermission:
    """Policy settings for one action type."""
    risk_tier: RiskTier
    min_confidence: float
    default_approval_required: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_tier": self.risk_tier.value,
            "min_confidence": self.min_confidence,
            "default_approval_required": self.default_approval_required,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActionPermission:
        return cls(
            risk_tier=RiskTier(data["risk_tier"]),
            min_confidence=float(data["min_confidence"]),
            default_approval_required=bool(data["default_approval_required"]),
        )


_TIER_PERMISSIONS: dict[RiskTier, ActionPermission] = {
    RiskTier.HIGH: ActionPermission(RiskTier.HIGH, 0.75, True),
    RiskTier.MEDIUM: ActionPermission(RiskTier.MEDIUM, 0.70, True),
    RiskTier.LOW: ActionPermission(RiskTier.LOW, 0.65, False),
    RiskTier.MINIMAL: ActionPermission(RiskTier.MINIMAL, 0.60, False),
}

ACTION_TYPE_RISK_TIERS: dict[ActionType, RiskTier] = {
    ActionType.REQUEST_RENEWAL_MEETING: RiskTier.HIGH,
    ActionType.REQUEST_DISCOVERY_CALL: RiskTier.HIGH,
    ActionType.REQUEST_STAKEHOLDER_INTRO: RiskTier.HIGH,
    ActionType.UPDATE_OPPORTUNITY_STAGE: RiskTier.MEDIUM,
    ActionType.CREATE_OPPORTUNITY: RiskTier.MEDIUM,
    ActionType.UPDATE_ACCOUNT_FIELDS: RiskTier.MEDIUM,
    ActionType.CREATE_INTERNAL_NOTE: RiskTier.LOW,
    ActionType.CREATE_INTERNAL_TASK: RiskTier.LOW,
    ActionType.FLAG_FOR_REVIEW: RiskTier.LOW,
    ActionType.FETCH_ACCOUNT_NEWS: RiskTier.MINIMAL,
    ActionType.ANALYZE_USAGE_PATTERNS: RiskTier.MINIMAL,
}

ACTION_TYPE_EXPIRY_DAYS: dict[ActionType, int] = {
    ActionType.REQUEST_RENEWAL_MEETING: 7,
    ActionType.REQUEST_DISCOVERY_CALL: 14,
    ActionType.REQUEST_STAKEHOLDER_INTRO: 14,
    ActionType.UPDATE_OPPORTUNITY_STAGE: 30,
    ActionType.CREATE_OPPORTUNITY: 30,
    ActionType.UPDATE_ACCOUNT_FIELDS: 30,
    ActionType.CREATE_INTERNAL_NOTE: 90,
    ActionType.CREATE_INTERNAL_TASK: 30,
    ActionType.FLAG_FOR_REVIEW: 7,
    ActionType.FETCH_ACCOUNT_NEWS: 1,
    ActionType.ANALYZE_USAGE_PATTERNS: 1,
}

DEFAULT_EXPIRY_DAYS = 30


def _check_exhaustive(name: str, mapping: Mapping[ActionType, Any]) -> None:
    missing = set(ActionType) - set(mapping)
    if missing:
        raise RuntimeError(f"{name} is missing action types: {sorted(m.value for m in missing)}")


_check_exhaustive("ACTION_TYPE_RISK_TIERS", ACTION_TYPE_RISK_TIERS)
_check_exhaustive("ACTION_TYPE_EXPIRY_DAYS", ACTION_TYPE_EXPIRY_DAYS)


def default_permission(action_type: ActionType) -> ActionPermission:
    """Static permission for an action type."""
    return _TIER_PERMISSIONS[ACTION_TYPE_RISK_TIERS[action_type]]


def default_action_permissions() -> dict[str, ActionPermission]:
    return {action_type.value: default_permission(action_type) for action_type in ActionType}


def expiry_days_for(action_type: str) -> int:
    try:
        return ACTION_TYPE_EXPIRY_DAYS[ActionType(action_type)]
    except ValueError:
        return DEFAULT_EXPIRY_DAYS


# =============================================================================
# Proposals
# =============================================================================


@dataclass(frozen=True)
class TargetEntity:
    entity_type: str
    entity_id: str

    def to_dict(self) -> dict[str, str]:
        return {"entity_type": self.entity_type, "entity_id": self.entity_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TargetEntity:
        return cls(entity_type=str(data["entity_type"]), entity_id=str(data["entity_id"]))


@dataclass
class ActionProposal:
    """One proposed action. ``action_ref`` is assigned by the server."""
    action_ref: str
    action_type: str
    why: list[str]
    confidence: float
    risk_level: str
    llm_suggests_human_review: bool
    target: TargetEntity
    blocking_unknowns: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    parameters_schema_version: str | None = None
    proposed_rank: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action_ref": self.action_ref,
            "action_type": self.action_type,
            "why": list(self.why),
            "confidence": self.confidence,
            "risk_level": self.risk_level,
            "llm_suggests_human_review": self.llm_suggests_human_review,
            "target": self.target.to_dict(),
            "blocking_unknowns": list(self.blocking_unknowns),
            "parameters": dict(self.parameters),
        }
        if self.parameters_schema_version is not None:
            data["parameters_schema_version"] = self.parameters_schema_version
        if self.proposed_rank is not None:
            data["proposed_rank"] = self.proposed_rank
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActionProposal:
        return cls(
            action_ref=data["action_ref"],
            action_type=data["action_type"],
            why=list(data.get("why") or []),
            confidence=float(data["confidence"]),
            risk_level=data["risk_level"],
            llm_suggests_human_review=bool(data.get("llm_suggests_human_review", False)),
            target=TargetEntity.from_dict(data["target"]),
            blocking_unknowns=list(data.get("blocking_unknowns") or []),
            parameters=dict(data.get("parameters") or {}),
            parameters_schema_version=data.get("parameters_schema_version"),
            proposed_rank=data.get("proposed_rank"),
        )


@dataclass
class DecisionProposal:
    """A synthesized, validated proposal. Immutable once stored."""
    decision_id: str
    tenant_id: str
    account_id: str
    decision_type: DecisionType
    decision_reason_codes: list[str]
    summary: str
    actions: list[ActionProposal]
    proposal_fingerprint: str
    trace_id: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    decision_version: str = "v1"
    schema_version: str = "v1"
    confidence: float | None = None
    blocking_unknowns: list[str] = field(default_factory=list)
    evaluation_id: str | None = None

    def find_action(self, action_ref: str) -> ActionProposal | None:
        for action in self.actions:
            if action.action_ref == action_ref:
                return action
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_id": self.decision_id,
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "decision_type": self.decision_type.value,
            "decision_reason_codes": list(self.decision_reason_codes),
            "summary": self.summary,
            "actions": [a.to_dict() for a in self.actions],
            "proposal_fingerprint": self.proposal_fingerprint,
            "trace_id": self.trace_id,
            "created_at": self.created_at,
            "decision_version": self.decision_version,
            "schema_version": self.schema_version,
            "confidence": self.confidence,
            "blocking_unknowns": list(self.blocking_unknowns),
            "evaluation_id": self.evaluation_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DecisionProposal:
        return cls(
            decision_id=data["decision_id"],
            tenant_id=data["tenant_id"],
            account_id=data["account_id"],
            decision_type=DecisionType(data["decision_type"]),
            decision_reason_codes=list(data.get("decision_reason_codes") or []),
            summary=data.get("summary", ""),
            actions=[ActionProposal.from_dict(a) for a in data.get("actions") or []],
            proposal_fingerprint=data["proposal_fingerprint"],
            trace_id=data.get("trace_id", ""),
            created_at=data.get("created_at") or datetime.now(timezone.utc).isoformat(),
            decision_version=data.get("decision_version", "v1"),
            schema_version=data.get("schema_version", "v1"),
            confidence=data.get("confidence"),
            blocking_unknowns=list(data.get("blocking_unknowns") or []),
            evaluation_id=data.get("evaluation_id"),
        )


# =============================================================================
# Policy
# =============================================================================


@dataclass
class PolicyContext:
    """Tenant policy inputs used by the policy gate."""
    tenant_id: str
    min_confidence_threshold: float
    action_type_permissions: dict[str, ActionPermission]
    cost_budget_remaining: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "min_confidence_threshold": self.min_confidence_threshold,
            "action_type_permissions": {
                k: v.to_dict() for k, v in sorted(self.action_type_permissions.items())
            },
            "cost_budget_remaining": self.cost_budget_remaining,
        }


@dataclass(frozen=True)
class PolicyEvaluationResult:
    """Deterministic, recomputable policy verdict for one action."""
    action_ref: str
    evaluation: PolicyEvaluation
    reason_codes: tuple[str, ...]
    confidence_threshold_met: bool
    policy_risk_tier: RiskTier
    approval_required: bool
    needs_human_input: bool
    blocked_reason: str | None
    llm_suggests_human_review: bool
    llm_risk_level: str
    inputs_hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_ref": self.action_ref,
            "evaluation": self.evaluation.value,
            "reason_codes": list(self.reason_codes),
            "confidence_threshold_met": self.confidence_threshold_met,
            "policy_risk_tier": self.policy_risk_tier.value,
            "approval_required": self.approval_required,
            "needs_human_input": self.needs_human_input,
            "blocked_reason": self.blocked_reason,
            "llm_suggests_human_review": self.llm_suggests_human_review,
            "llm_risk_level": self.llm_risk_level,
            "inputs_hash": self.inputs_hash,
        }


# =============================================================================
# Action intents
# =============================================================================


@dataclass(frozen=True)
class ExecutionPolicy:
    retry_count: int = 3
    timeout_seconds: int = 300
    max_attempts: int = 1

    def to_dict(self) -> dict[str, int]:
        return {
            "retry_count": self.retry_count,
            "timeout_seconds": self.timeout_seconds,
            "max_attempts": self.max_attempts,
        }


def generate_action_intent_id() -> str:
    return f"ai_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class ActionIntent:
    """An approved, execution-ready action. Never mutated after creation."""
    action_intent_id: str
    action_type: str
    target: TargetEntity
    parameters: dict[str, Any]
    approved_by: str
    approval_timestamp: str
    expires_at: str
    expires_at_epoch: int
    original_decision_id: str
    original_proposal_id: str
    tenant_id: str
    account_id: str
    trace_id: str
    action_ref: str
    confidence_score: float
    risk_level: str
    execution_policy: ExecutionPolicy = field(default_factory=ExecutionPolicy)
    supersedes_action_intent_id: str | None = None
    edited_fields: list[str] = field(default_factory=list)
    edited_by: str | None = None
    edited_at: str | None = None
    parameters_schema_version: str | None = None
    registry_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_intent_id": self.action_intent_id,
            "action_type": self.action_type,
            "target": self.target.to_dict(),
            "parameters": dict(self.parameters),
            "approved_by": self.approved_by,
            "approval_timestamp": self.approval_timestamp,
            "expires_at": self.expires_at,
            "expires_at_epoch": self.expires_at_epoch,
            "original_decision_id": self.original_decision_id,
            "original_proposal_id": self.original_proposal_id,
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "trace_id": self.trace_id,
            "action_ref": self.action_ref,
            "confidence_score": self.confidence_score,
            "risk_level": self.risk_level,
            "execution_policy": self.execution_policy.to_dict(),
            "supersedes_action_intent_id": self.supersedes_action_intent_id,
            "edited_fields": list(self.edited_fields),
            "edited_by": self.edited_by,
            "edited_at": self.edited_at,
            "parameters_schema_version": self.parameters_schema_version,
            "registry_version": self.registry_version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActionIntent:
        policy = data.get("execution_policy") or {}
        return cls(
            action_intent_id=data["action_intent_id"],
            action_type=data["action_type"],
            target=TargetEntity.from_dict(data["target"]),
            parameters=dict(data.get("parameters") or {}),
            approved_by=data["approved_by"],
            approval_timestamp=data["approval_timestamp"],
            expires_at=data["expires_at"],
            expires_at_epoch=int(data["expires_at_epoch"]),
            original_decision_id=data["original_decision_id"],
            original_proposal_id=data["original_proposal_id"],
            tenant_id=data["tenant_id"],
            account_id=data["account_id"],
            trace_id=data.get("trace_id", ""),
            action_ref=data.get("action_ref", ""),
            confidence_score=float(data.get("confidence_score", 0.0)),
            risk_level=data.get("risk_level", ""),
            execution_policy=ExecutionPolicy(**policy) if policy else ExecutionPolicy(),
            supersedes_action_intent_id=data.get("supersedes_action_intent_id"),
            edited_fields=list(data.get("edited_fields") or []),
            edited_by=data.get("edited_by"),
            edited_at=data.get("edited_at"),
            parameters_schema_version=data.get("parameters_schema_version"),
            registry_version=int(data.get("registry_version", 1)),
        )


__all__ = [
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
]
