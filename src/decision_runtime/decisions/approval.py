"""
Human approval workflow for proposed actions.

Approval never trusts action data from the caller. It reloads the stored
proposal, finds the action by ``action_ref`` and copies the immutable fields
(``action_type``, ``target``) from storage. Only ``parameters`` and
``expires_at`` may be edited; ``expires_at_epoch`` is recomputed from an
edited expiry.

Editing an approved intent creates a successor that supersedes it. The
original is left untouched.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from ..errors import ErrorCode, ErrorContext, NotFoundError, ValidationError
from ..events.bus import EventBus
from ..events.types import DecisionEvent, DecisionEventType
from ..ledger import DecisionLedger, LedgerEntry, LedgerEventType
from ..logging import get_logger
from .intents import ActionIntentStore
from .proposal_store import ProposalStore
from .types import (
    ActionIntent,
    ActionProposal,
    DecisionProposal,
    ExecutionPolicy,
    expiry_days_for,
    generate_action_intent_id,
)

logger = get_logger("decision_runtime.approval")

EDITABLE_FIELDS = ("parameters", "expires_at")
LOCKED_FIELDS = frozenset({
    "action_type",
    "target",
    "action_intent_id",
    "original_decision_id",
    "original_proposal_id",
    "tenant_id",
    "account_id",
})

APPROVAL_SOURCE_HUMAN = "HUMAN"


@dataclass(frozen=True)
class ActionRejection:
    action_ref: str
    decision_id: str
    tenant_id: str
    account_id: str
    rejected_by: str
    rejection_reason: str | None = None
    rejected_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_ref": self.action_ref,
            "decision_id": self.decision_id,
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "rejected_at": self.rejected_at,
        }


def _parse_expiry(value: Any) -> datetime:
    if not isinstance(value, str) or not value:
        raise ValidationError("expires_at must be an ISO-8601 timestamp", field_name="expires_at")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid expires_at: {value!r}", field_name="expires_at", cause=e) from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_edits(edits: Mapping[str, Any] | None) -> dict[str, Any]:
    """Check an edit set and return it normalized. Raises ``ValidationError``."""
    if not edits:
        return {}
    if not isinstance(edits, Mapping):
        raise ValidationError("edits must be an object", field_name="edits")

    for name in edits:
        if name in LOCKED_FIELDS:
            raise ValidationError(
                f"Cannot edit locked field: {name}",
                field_name=name,
                code=ErrorCode.IMMUTABLE_FIELD,
            )
        if name not in EDITABLE_FIELDS:
            raise ValidationError(f"Field is not editable: {name}", field_name=name)

    normalized: dict[str, Any] = {}
    if "parameters" in edits:
        if not isinstance(edits["parameters"], Mapping):
            raise ValidationError("parameters must be an object", field_name="parameters")
        normalized["parameters"] = dict(edits["parameters"])
    if "expires_at" in edits:
        normalized["expires_at"] = _parse_expiry(edits["expires_at"])
    return normalized


class ApprovalWorkflow:
    """Approves, rejects and edits actions against stored proposals."""

    def __init__(
        self,
        proposals: ProposalStore,
        intents: ActionIntentStore,
        ledger: DecisionLedger,
        event_bus: EventBus,
        clock: Callable[[], float] = time.time,
        intent_id_factory: Callable[[], str] = generate_action_intent_id,
    ):
        self._proposals = proposals
        self._intents = intents
        self._ledger = ledger
        self._bus = event_bus
        self._clock = clock
        self._new_intent_id = intent_id_factory

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def _load_action(
        self,
        tenant_id: str,
        decision_id: str,
        action_ref: str,
    ) -> tuple[DecisionProposal, ActionProposal]:
        if not tenant_id or not decision_id or not action_ref:
            raise ValidationError("Missing required fields: action_ref, decision_id, tenant_id")

        ctx = ErrorContext(tenant_id=tenant_id, operation="load_action", extra={"decision_id": decision_id})
        proposal = await self._proposals.get_proposal(decision_id, tenant_id)
        if proposal is None:
            raise NotFoundError(f"Decision not found: {decision_id}", context=ctx)
        action = proposal.find_action(action_ref)
        if action is None:
            raise NotFoundError(f"Action proposal not found in decision: {action_ref}", context=ctx)
        return proposal, action

    async def approve(
        self,
        tenant_id: str,
        decision_id: str,
        action_ref: str,
        edits: Mapping[str, Any] | None = None,
        approver: str = "unknown",
    ) -> ActionIntent:
        normalized = validate_edits(edits)
        proposal, action = await self._load_action(tenant_id, decision_id, action_ref)

        now = self._now()
        expires = normalized.get("expires_at") or now + timedelta(days=expiry_days_for(action.action_type))
        edited_fields = sorted(normalized)

        intent = ActionIntent(
            action_intent_id=self._new_intent_id(),
            action_type=action.action_type,
            target=action.target,
            parameters=normalized.get("parameters", dict(action.parameters)),
            approved_by=approver,
            approval_timestamp=now.isoformat(),
            expires_at=expires.isoformat(),
            expires_at_epoch=int(expires.timestamp()),
            original_decision_id=proposal.decision_id,
            original_proposal_id=proposal.decision_id,
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            trace_id=proposal.trace_id,
            action_ref=action.action_ref,
            confidence_score=action.confidence,
            risk_level=action.risk_level,
            execution_policy=ExecutionPolicy(),
            edited_fields=edited_fields,
            edited_by=approver if edited_fields else None,
            edited_at=now.isoformat() if edited_fields else None,
            parameters_schema_version=action.parameters_schema_version,
        )
        await self._intents.create(intent)

        await self._ledger.append(LedgerEntry(
            event_type=LedgerEventType.ACTION_APPROVED,
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            trace_id=proposal.trace_id,
            decision_id=proposal.decision_id,
            data={
                "action_intent_id": intent.action_intent_id,
                "action_ref": action.action_ref,
                "decision_id": proposal.decision_id,
                "edited_fields": edited_fields,
                "approved_by": approver,
            },
        ))
        await self._bus.publish(DecisionEvent(
            event_type=DecisionEventType.ACTION_APPROVED,
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            correlation_id=proposal.trace_id,
            data={
                "action_intent_id": intent.action_intent_id,
                "tenant_id": proposal.tenant_id,
                "account_id": proposal.account_id,
                "approval_source": APPROVAL_SOURCE_HUMAN,
                "auto_executed": False,
            },
        ))
        logger.info(
            "Action approved",
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            decision_id=proposal.decision_id,
            action_ref=action.action_ref,
            action_intent_id=intent.action_intent_id,
            edited_fields=edited_fields,
        )
        return intent

    async def reject(
        self,
        tenant_id: str,
        decision_id: str,
        action_ref: str,
        rejection_reason: str | None = None,
        rejected_by: str = "unknown",
    ) -> ActionRejection:
        proposal, action = await self._load_action(tenant_id, decision_id, action_ref)

        rejection = ActionRejection(
            action_ref=action.action_ref,
            decision_id=proposal.decision_id,
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            rejected_by=rejected_by,
            rejection_reason=rejection_reason,
            rejected_at=self._now().isoformat(),
        )
        data = {
            "action_ref": action.action_ref,
            "decision_id": proposal.decision_id,
            "rejected_by": rejected_by,
            "rejection_reason": rejection_reason,
        }
        await self._ledger.append(LedgerEntry(
            event_type=LedgerEventType.ACTION_REJECTED,
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            trace_id=proposal.trace_id,
            decision_id=proposal.decision_id,
            data=data,
        ))
        await self._bus.publish(DecisionEvent(
            event_type=DecisionEventType.ACTION_REJECTED,
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            correlation_id=proposal.trace_id,
            data=dict(data),
        ))
        logger.info(
            "Action rejected",
            tenant_id=proposal.tenant_id,
            account_id=proposal.account_id,
            decision_id=proposal.decision_id,
            action_ref=action.action_ref,
        )
        return rejection

    async def edit_intent(
        self,
        tenant_id: str,
        account_id: str,
        action_intent_id: str,
        edits: Mapping[str, Any],
        editor: str,
    ) -> ActionIntent:
        """Create a successor of an approved intent with ``edits`` applied."""
        normalized = validate_edits(edits)
        if not normalized:
            raise ValidationError("No edits supplied", field_name="edits")

        original = await self._intents.get_intent(action_intent_id, tenant_id, account_id)
        if original is None:
            raise NotFoundError(
                f"Action intent not found: {action_intent_id}",
                context=ErrorContext(tenant_id=tenant_id, account_id=account_id, operation="edit_intent"),
            )

        now = self._now()
        expires_at, expires_at_epoch = original.expires_at, original.expires_at_epoch
        if "expires_at" in normalized:
            expires_at = normalized["expires_at"].isoformat()
            expires_at_epoch = int(normalized["expires_at"].timestamp())

        edited_fields = list(original.edited_fields)
        for name in sorted(normalized):
            if name not in edited_fields:
                edited_fields.append(name)

        successor = ActionIntent.from_dict({
            **original.to_dict(),
            "action_intent_id": self._new_intent_id(),
            "supersedes_action_intent_id": original.action_intent_id,
            "parameters": normalized.get("parameters", original.parameters),
            "expires_at": expires_at,
            "expires_at_epoch": expires_at_epoch,
            "edited_fields": edited_fields,
            "edited_by": editor,
            "edited_at": now.isoformat(),
        })
        await self._intents.create(successor)

        await self._ledger.append(LedgerEntry(
            event_type=LedgerEventType.ACTION_EDITED,
            tenant_id=tenant_id,
            account_id=account_id,
            trace_id=original.trace_id,
            decision_id=original.original_decision_id,
            data={
                "action_intent_id": successor.action_intent_id,
                "supersedes_action_intent_id": original.action_intent_id,
                "edited_fields": sorted(normalized),
                "edited_by": editor,
            },
        ))
        logger.info(
            "Action intent edited",
            tenant_id=tenant_id,
            account_id=account_id,
            action_intent_id=successor.action_intent_id,
            supersedes_action_intent_id=original.action_intent_id,
        )
        return successor


__all__ = [
    "EDITABLE_FIELDS",
    "LOCKED_FIELDS",
    "APPROVAL_SOURCE_HUMAN",
    "ActionRejection",
    "validate_edits",
    "ApprovalWorkflow",
]
