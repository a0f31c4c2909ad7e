"""
Proposal synthesis.

Builds a prompt from a ``DecisionContext``, calls the generative model and
turns its reply into a validated ``DecisionProposal``:

1. Parse: raw JSON first, then a markdown-fenced block, else fail the cycle.
2. Validate against the strict proposal contract (fails closed).
3. Fingerprint a normalized copy of the body (arrays sorted, ids and ranks
   excluded) so bodies that differ only in ordering hash identically.
4. Assign a server-generated ``decision_id``.
5. Sort actions by (action_type, target) and derive each ``action_ref`` from
   the decision id and the action's identity.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
import uuid
from typing import Any, Callable

from ..config import ModelConfig
from ..errors import (
    ErrorCode,
    ErrorContext,
    ErrorKind,
    SchemaViolation,
    TransientError,
    classify_error_message,
    error_for_kind,
)
from ..hashing import compute_hash, content_hash, stable_json_dumps
from ..logging import get_logger
from .context_assembler import DecisionContext
from .model_client import ModelClient
from .schema import validate_proposal_body
from .types import ActionProposal, DecisionProposal, DecisionType, TargetEntity

logger = get_logger("decision_runtime.synthesis")

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")

PROMPT_SIGNAL_LIMIT = 10

SYSTEM_PROMPT = (
    "You are a decision synthesis engine for an account intelligence platform. "
    "You recommend next actions for one account from its posture, signals, risks, "
    "opportunities and unknowns. Respond with exactly one JSON object that follows "
    "the requested schema. Never include prose outside the JSON object."
)


def build_prompt(context: DecisionContext) -> str:
    """Render the synthesis prompt for ``context``."""
    def _factors(items) -> str:
        return "\n".join(f"- {f.type}: {f.description}" for f in items) or "- none"

    signals = "\n".join(
        f"- {s.signal_type}: {s.description or 'No description'}"
        for s in context.active_signals[:PROMPT_SIGNAL_LIMIT]
    ) or "- none"
    action_types = ", ".join(sorted(context.policy_context.action_type_permissions))

    return f"""Account Context:
- Account ID: {context.account_id}
- Lifecycle State: {context.lifecycle_state.value}
- Posture: {context.posture_state.posture}
- Risk Factors: {len(context.risk_factors)}
- Opportunities: {len(context.opportunities)}
- Unknowns: {len(context.unknowns)}

Active Signals ({len(context.active_signals)}):
{signals}

Risk Factors:
{_factors(context.risk_factors)}

Opportunities:
{_factors(context.opportunities)}

Unknowns (blocking):
{_factors(context.unknowns)}

Policy Constraints:
- Min confidence threshold: {context.policy_context.min_confidence_threshold}
- Available action types: {action_types}

Task:
Decide what should happen next for this account. Return a JSON object with:
- decision_type: "PROPOSE_ACTIONS", "NO_ACTION_RECOMMENDED" or "BLOCKED_BY_UNKNOWNS"
- decision_reason_codes: array of normalized reason codes
- actions: array of actions (empty unless decision_type is PROPOSE_ACTIONS)
- summary: at most 280 characters
- decision_version: "v1"
- schema_version: "v1"
- confidence: number between 0 and 1
- blocking_unknowns: array of strings (non-empty only for BLOCKED_BY_UNKNOWNS)

Each action must include:
- action_type: one of the available action types
- why: 1 to 20 short evidence strings
- confidence: number between 0 and 1
- risk_level: "HIGH", "MEDIUM", "LOW" or "MINIMAL"
- llm_suggests_human_review: boolean
- target: {{"entity_type": "ACCOUNT" | "CONTACT" | "OPPORTUNITY" | "DEAL" | "ENGAGEMENT", "entity_id": string}}
- parameters: object (optional)
- blocking_unknowns: array of strings (optional)
- proposed_rank: integer 1 to 50 (optional)

Do not include any other fields."""


def parse_model_output(text: str) -> dict[str, Any]:
    """Extract the JSON object from a model reply or raise ``SchemaViolation``."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _FENCED_JSON.search(text)
        if match is None:
            raise SchemaViolation(
                "Model output is not JSON",
                code=ErrorCode.UNPARSEABLE_OUTPUT,
                errors=[text[:200]],
            )
        try:
            parsed = json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise SchemaViolation(
                "Fenced model output is not valid JSON",
                code=ErrorCode.UNPARSEABLE_OUTPUT,
                errors=[str(e)],
                cause=e,
            ) from e

    if not isinstance(parsed, dict):
        raise SchemaViolation(
            "Model output must be a JSON object",
            code=ErrorCode.UNPARSEABLE_OUTPUT,
            errors=[f"got {type(parsed).__name__}"],
        )
    return parsed


def _normalize_action(action: dict[str, Any]) -> dict[str, Any]:
    normalized = {k: v for k, v in action.items() if k not in ("action_ref", "proposed_rank")}
    normalized["why"] = sorted(action.get("why") or [])
    normalized["blocking_unknowns"] = sorted(action.get("blocking_unknowns") or [])
    normalized["parameters"] = action.get("parameters") or {}
    return normalized


def normalize_proposal_body(body: dict[str, Any]) -> dict[str, Any]:
    """Order-independent copy of a proposal body with ids and ranks removed."""
    normalized = {
        k: v for k, v in body.items()
        if k not in ("decision_id", "created_at", "trace_id", "proposal_fingerprint")
    }
    normalized["decision_reason_codes"] = sorted(body.get("decision_reason_codes") or [])
    normalized["blocking_unknowns"] = sorted(body.get("blocking_unknowns") or [])
    normalized["actions"] = sorted(
        (_normalize_action(a) for a in body.get("actions") or []),
        key=stable_json_dumps,
    )
    return normalized


def proposal_fingerprint(body: dict[str, Any]) -> str:
    return content_hash(normalize_proposal_body(body))


def generate_decision_id(account_id: str) -> str:
    return f"decision-{account_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def action_ref_for(decision_id: str, action: dict[str, Any]) -> str:
    target = action["target"]
    why0 = (action.get("why") or [""])[0]
    material = f"{decision_id}:{action['action_type']}:{target['entity_type']}:{target['entity_id']}:{why0}"
    return "action_ref_" + compute_hash(material, algorithm="sha256", truncate=16)


def _action_sort_key(action: dict[str, Any]) -> tuple[str, str, str, str]:
    target = action["target"]
    return (action["action_type"], target["entity_type"], target["entity_id"], stable_json_dumps(action))


class ProposalSynthesizer:
    """Generates and validates a decision proposal for an assembled context."""

    def __init__(
        self,
        model_client: ModelClient,
        config: ModelConfig | None = None,
        id_factory: Callable[[str], str] = generate_decision_id,
    ):
        self._model = model_client
        self._config = config or ModelConfig()
        self._id_factory = id_factory

    async def synthesize(self, context: DecisionContext, evaluation_id: str | None = None) -> DecisionProposal:
        err_ctx = ErrorContext(
            tenant_id=context.tenant_id,
            account_id=context.account_id,
            trace_id=context.trace_id,
            operation="synthesize",
        )
        prompt = build_prompt(context)
        logger.debug("Invoking model", prompt_length=len(prompt), trace_id=context.trace_id)

        try:
            reply = await asyncio.wait_for(
                self._model.complete(prompt, SYSTEM_PROMPT),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise TransientError(
                f"Model call timed out after {self._config.timeout_seconds}s",
                code=ErrorCode.TIMEOUT,
                kind=ErrorKind.TIMEOUT,
                context=err_ctx,
                cause=e,
            ) from e

        if not reply.ok:
            kind = reply.error_kind or classify_error_message(reply.error)
            raise error_for_kind(kind, f"Model call failed: {reply.error}", context=err_ctx)

        body = parse_model_output(reply.text or "")
        try:
            validate_proposal_body(body)
        except SchemaViolation as e:
            e.context = err_ctx
            logger.log_error(e, "Proposal failed validation", errors=e.errors)
            raise

        fingerprint = proposal_fingerprint(body)
        decision_id = self._id_factory(context.account_id)

        actions: list[ActionProposal] = []
        seen_refs: set[str] = set()
        for raw in sorted(body["actions"], key=_action_sort_key):
            ref = action_ref_for(decision_id, raw)
            if ref in seen_refs:
                raise SchemaViolation(
                    "Proposal contains duplicate actions",
                    code=ErrorCode.INVARIANT_VIOLATION,
                    errors=[f"duplicate action {raw['action_type']} on {raw['target']['entity_id']}"],
                    context=err_ctx,
                )
            seen_refs.add(ref)
            actions.append(ActionProposal(
                action_ref=ref,
                action_type=raw["action_type"],
                why=list(raw["why"]),
                confidence=float(raw["confidence"]),
                risk_level=raw["risk_level"],
                llm_suggests_human_review=raw["llm_suggests_human_review"],
                target=TargetEntity.from_dict(raw["target"]),
                blocking_unknowns=list(raw.get("blocking_unknowns") or []),
                parameters=dict(raw.get("parameters") or {}),
                parameters_schema_version=raw.get("parameters_schema_version"),
                proposed_rank=raw.get("proposed_rank"),
            ))

        proposal = DecisionProposal(
            decision_id=decision_id,
            tenant_id=context.tenant_id,
            account_id=context.account_id,
            decision_type=DecisionType(body["decision_type"]),
            decision_reason_codes=list(body["decision_reason_codes"]),
            summary=body["summary"],
            actions=actions,
            proposal_fingerprint=fingerprint,
            trace_id=context.trace_id,
            confidence=body.get("confidence"),
            blocking_unknowns=list(body.get("blocking_unknowns") or []),
            evaluation_id=evaluation_id,
        )
        logger.info(
            "Proposal synthesized",
            decision_id=decision_id,
            decision_type=proposal.decision_type.value,
            action_count=len(actions),
            proposal_fingerprint=fingerprint,
        )
        return proposal


__all__ = [
    "SYSTEM_PROMPT",
    "build_prompt",
    "parse_model_output",
    "normalize_proposal_body",
    "proposal_fingerprint",
    "generate_decision_id",
    "action_ref_for",
    "ProposalSynthesizer",
]
