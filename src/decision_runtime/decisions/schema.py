"""
Strict contract for generative proposal bodies.

Validation fails closed: structural errors come from the JSON schema, then
the decision-type invariants are checked on the structurally valid body.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator

from ..errors import ErrorCode, SchemaViolation
from .types import ActionType, DecisionType, EntityType, RiskTier

ACTION_PROPOSAL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "action_type",
        "why",
        "confidence",
        "risk_level",
        "llm_suggests_human_review",
        "target",
    ],
    "properties": {
        "action_type": {"type": "string", "enum": [t.value for t in ActionType]},
        "why": {
            "type": "array",
            "minItems": 1,
            "maxItems": 20,
            "items": {"type": "string", "minLength": 1},
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "risk_level": {"type": "string", "enum": [t.value for t in RiskTier]},
        "llm_suggests_human_review": {"type": "boolean"},
        "blocking_unknowns": {
            "type": "array",
            "maxItems": 20,
            "items": {"type": "string", "minLength": 1, "maxLength": 128},
        },
        "parameters": {"type": "object"},
        "parameters_schema_version": {"type": "string"},
        "proposed_rank": {"type": "integer", "minimum": 1, "maximum": 50},
        "target": {
            "type": "object",
            "additionalProperties": False,
            "required": ["entity_type", "entity_id"],
            "properties": {
                "entity_type": {"type": "string", "enum": [t.value for t in EntityType]},
                "entity_id": {"type": "string", "minLength": 1},
            },
        },
    },
}

PROPOSAL_BODY_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "required": [
        "decision_type",
        "decision_reason_codes",
        "decision_version",
        "schema_version",
        "summary",
        "actions",
    ],
    "properties": {
        "decision_type": {"type": "string", "enum": [t.value for t in DecisionType]},
        "decision_reason_codes": {
            "type": "array",
            "maxItems": 50,
            "items": {"type": "string", "minLength": 1, "maxLength": 256},
        },
        "decision_version": {"const": "v1"},
        "schema_version": {"const": "v1"},
        "summary": {"type": "string", "minLength": 1, "maxLength": 280},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "blocking_unknowns": {
            "type": "array",
            "maxItems": 20,
            "items": {"type": "string", "minLength": 1, "maxLength": 128},
        },
        "actions": {"type": "array", "maxItems": 25, "items": ACTION_PROPOSAL_SCHEMA},
    },
}

Draft202012Validator.check_schema(PROPOSAL_BODY_SCHEMA)
_VALIDATOR = Draft202012Validator(PROPOSAL_BODY_SCHEMA)


def _schema_errors(body: Any) -> list[str]:
    errors: list[str] = []
    for err in sorted(_VALIDATOR.iter_errors(body), key=lambda e: list(map(str, e.path))):
        path = "/".join(str(p) for p in err.path) or "<root>"
        errors.append(f"{path}: {err.message}")
    return errors


def _invariant_errors(body: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    decision_type = body["decision_type"]
    actions = body["actions"]
    if decision_type == DecisionType.NO_ACTION_RECOMMENDED.value and actions:
        errors.append("actions: must be empty when decision_type is NO_ACTION_RECOMMENDED")
    if decision_type == DecisionType.BLOCKED_BY_UNKNOWNS.value:
        if not body.get("blocking_unknowns"):
            errors.append("blocking_unknowns: must be non-empty when decision_type is BLOCKED_BY_UNKNOWNS")
        if actions:
            errors.append("actions: must be empty when decision_type is BLOCKED_BY_UNKNOWNS")
    if decision_type == DecisionType.PROPOSE_ACTIONS.value and not actions:
        errors.append("actions: at least one action is required when decision_type is PROPOSE_ACTIONS")
    return errors


def proposal_body_errors(body: Any) -> list[str]:
    """All schema and invariant violations for ``body``. Empty when valid."""
    return _schema_errors(body) or _invariant_errors(body)


def validate_proposal_body(body: Any) -> dict[str, Any]:
    """Return ``body`` if valid, else raise ``SchemaViolation``."""
    errors = _schema_errors(body)
    if errors:
        raise SchemaViolation(
            f"Proposal body failed schema validation ({len(errors)} errors)",
            errors=errors,
        )
    errors = _invariant_errors(body)
    if errors:
        raise SchemaViolation(
            "Proposal body violates decision invariants",
            errors=errors,
            code=ErrorCode.INVARIANT_VIOLATION,
        )
    return body


__all__ = [
    "ACTION_PROPOSAL_SCHEMA",
    "PROPOSAL_BODY_SCHEMA",
    "proposal_body_errors",
    "validate_proposal_body",
]
