"""
Deterministic policy gate for proposed actions.

Evaluation order per action:
1. Action type not permitted for the tenant -> BLOCKED / UNKNOWN_ACTION_TYPE
2. Blocking unknowns on the action -> BLOCKED / BLOCKING_UNKNOWNS_PRESENT
3. Tier rule, using the policy-configured tier only:
   HIGH and MEDIUM always require approval; LOW and MINIMAL are allowed
   when confidence clears the tier threshold, otherwise blocked.

The model's self-reported ``risk_level`` is carried through for reference
and never affects the verdict.
"""

from __future__ import annotations

from ..hashing import content_hash
from ..logging import PolicyLog, get_logger
from .types import (
    ActionProposal,
    DecisionProposal,
    DecisionType,
    PolicyContext,
    PolicyEvaluation,
    PolicyEvaluationResult,
    RiskTier,
)

logger = get_logger("decision_runtime.policy")

MINIMAL_CONFIDENCE_FLOOR = 0.60


def _inputs_hash(action: ActionProposal, policy_context: PolicyContext) -> str:
    permission = policy_context.action_type_permissions.get(action.action_type)
    return content_hash({
        "action": action.to_dict(),
        "permission": permission.to_dict() if permission else None,
        "tenant_id": policy_context.tenant_id,
    })


def evaluate_action(action: ActionProposal, policy_context: PolicyContext) -> PolicyEvaluationResult:
    """Evaluate one action. Same inputs always give the same result."""
    inputs_hash = _inputs_hash(action, policy_context)
    permission = policy_context.action_type_permissions.get(action.action_type)

    if permission is None:
        return PolicyEvaluationResult(
            action_ref=action.action_ref,
            evaluation=PolicyEvaluation.BLOCKED,
            reason_codes=("UNKNOWN_ACTION_TYPE",),
            confidence_threshold_met=False,
            policy_risk_tier=RiskTier.HIGH,
            approval_required=False,
            needs_human_input=False,
            blocked_reason="UNKNOWN_ACTION_TYPE",
            llm_suggests_human_review=action.llm_suggests_human_review,
            llm_risk_level=action.risk_level,
            inputs_hash=inputs_hash,
        )

    tier = permission.risk_tier
    threshold_met = action.confidence >= permission.min_confidence

    if action.blocking_unknowns:
        return PolicyEvaluationResult(
            action_ref=action.action_ref,
            evaluation=PolicyEvaluation.BLOCKED,
            reason_codes=("BLOCKING_UNKNOWNS_PRESENT",),
            confidence_threshold_met=False,
            policy_risk_tier=tier,
            approval_required=False,
            needs_human_input=True,
            blocked_reason="BLOCKING_UNKNOWNS_PRESENT",
            llm_suggests_human_review=action.llm_suggests_human_review,
            llm_risk_level=action.risk_level,
            inputs_hash=inputs_hash,
        )

    if tier == RiskTier.HIGH:
        evaluation, reason, blocked = PolicyEvaluation.APPROVAL_REQUIRED, "HIGH_RISK_ACTION", None
    elif tier == RiskTier.MEDIUM:
        evaluation, reason, blocked = PolicyEvaluation.APPROVAL_REQUIRED, "MEDIUM_RISK_ACTION", None
    elif tier == RiskTier.LOW:
        if threshold_met:
            evaluation, reason, blocked = PolicyEvaluation.ALLOWED, "LOW_RISK_CONFIDENCE_THRESHOLD_MET", None
        else:
            evaluation, reason, blocked = PolicyEvaluation.BLOCKED, "CONFIDENCE_BELOW_THRESHOLD", "CONFIDENCE_BELOW_THRESHOLD"
    else:
        threshold_met = action.confidence >= MINIMAL_CONFIDENCE_FLOOR
        if threshold_met:
            evaluation, reason, blocked = PolicyEvaluation.ALLOWED, "MINIMAL_RISK_AUTO_ALLOWED", None
        else:
            evaluation, reason, blocked = PolicyEvaluation.BLOCKED, "CONFIDENCE_BELOW_MINIMUM", "CONFIDENCE_BELOW_MINIMUM"

    return PolicyEvaluationResult(
        action_ref=action.action_ref,
        evaluation=evaluation,
        reason_codes=(reason,),
        confidence_threshold_met=threshold_met,
        policy_risk_tier=tier,
        approval_required=evaluation == PolicyEvaluation.APPROVAL_REQUIRED,
        needs_human_input=False,
        blocked_reason=blocked,
        llm_suggests_human_review=action.llm_suggests_human_review,
        llm_risk_level=action.risk_level,
        inputs_hash=inputs_hash,
    )


def evaluate_decision_proposal(
    proposal: DecisionProposal,
    policy_context: PolicyContext,
) -> list[PolicyEvaluationResult]:
    """Evaluate every action of a proposal, in stored order."""
    if proposal.decision_type in (DecisionType.NO_ACTION_RECOMMENDED, DecisionType.BLOCKED_BY_UNKNOWNS):
        return []

    results = [evaluate_action(action, policy_context) for action in proposal.actions]
    for result in results:
        logger.log_policy(PolicyLog(
            decision_id=proposal.decision_id,
            action_ref=result.action_ref,
            evaluation=result.evaluation.value,
            policy_risk_tier=result.policy_risk_tier.value,
            reason_codes=list(result.reason_codes),
        ))
    return results


__all__ = [
    "MINIMAL_CONFIDENCE_FLOOR",
    "evaluate_action",
    "evaluate_decision_proposal",
]
