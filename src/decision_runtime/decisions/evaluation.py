"""
Decision evaluation cycle.

Runs one admitted evaluation end to end:

1. Materialization gate: the account's latest signal must be COMPLETED
2. Context assembly
3. Budget check (denial skips the cycle)
4. Proposal synthesis
5. Policy evaluation
6. Budget consumption
7. Proposal storage
8. Ledger entries
9. DECISION_PROPOSED publication

Nothing is stored when synthesis fails, so a cycle never leaves a partial
proposal behind. Failures are recorded in the ledger and re-raised for the
invoking platform's retry policy.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..collaborators import MATERIALIZATION_COMPLETED, MaterializationStatusProvider
from ..errors import DecisionRuntimeError
from ..events.bus import EventBus
from ..events.types import DecisionEvent, DecisionEventType
from ..ledger import DecisionLedger, LedgerEntry, LedgerEventType
from ..logging import generate_trace_id, get_logger
from .budget import BudgetService
from .context_assembler import ContextAssembler
from .policy_gate import evaluate_decision_proposal
from .proposal_store import ProposalStore
from .synthesizer import ProposalSynthesizer
from .types import DecisionProposal, PolicyEvaluationResult

logger = get_logger("decision_runtime.evaluation")


class EvaluationOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    NOT_COMPLETED = "NOT_COMPLETED"
    SKIPPED = "SKIPPED"


@dataclass
class EvaluationResult:
    evaluation_id: str
    outcome: EvaluationOutcome
    reason: str | None = None
    proposal: DecisionProposal | None = None
    policy_evaluations: list[PolicyEvaluationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluation_id": self.evaluation_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "decision": self.proposal.to_dict() if self.proposal else None,
            "policy_evaluations": [r.to_dict() for r in self.policy_evaluations],
        }


def generate_evaluation_id() -> str:
    return f"eval_{uuid.uuid4().hex}"


class DecisionEvaluator:
    """Runs the evaluation cycle for one (tenant, account)."""

    def __init__(
        self,
        materialization: MaterializationStatusProvider,
        assembler: ContextAssembler,
        budget: BudgetService,
        synthesizer: ProposalSynthesizer,
        proposals: ProposalStore,
        ledger: DecisionLedger,
        event_bus: EventBus,
    ):
        self._materialization = materialization
        self._assembler = assembler
        self._budget = budget
        self._synthesizer = synthesizer
        self._proposals = proposals
        self._ledger = ledger
        self._bus = event_bus

    async def evaluate(
        self,
        tenant_id: str,
        account_id: str,
        trigger_type: str | None = None,
        evaluation_id: str | None = None,
        trace_id: str | None = None,
    ) -> EvaluationResult:
        evaluation_id = evaluation_id or generate_evaluation_id()
        trace_id = trace_id or generate_trace_id()

        with logger.trace_context(trace_id, tenant_id=tenant_id, account_id=account_id, operation="evaluate"):
            status = await self._materialization.get_latest_status(tenant_id, account_id)
            if status != MATERIALIZATION_COMPLETED:
                logger.info("Synthesis skipped: materialization not completed", materialization_status=status)
                await self._record_skip(tenant_id, account_id, trace_id, evaluation_id, "NOT_COMPLETED")
                return EvaluationResult(evaluation_id, EvaluationOutcome.NOT_COMPLETED, reason=f"materialization status {status!r}")

            try:
                return await self._run(tenant_id, account_id, trigger_type, evaluation_id, trace_id)
            except DecisionRuntimeError as e:
                logger.log_error(e, "Decision evaluation failed", evaluation_id=evaluation_id)
                await self._record_failure(tenant_id, account_id, trace_id, evaluation_id, e.code.value, str(e))
                raise
            except Exception as e:
                logger.log_error(e, "Decision evaluation failed unexpectedly", evaluation_id=evaluation_id)
                await self._record_failure(tenant_id, account_id, trace_id, evaluation_id, type(e).__name__, str(e))
                raise

    async def _run(
        self,
        tenant_id: str,
        account_id: str,
        trigger_type: str | None,
        evaluation_id: str,
        trace_id: str,
    ) -> EvaluationResult:
        context = await self._assembler.assemble_context(tenant_id, account_id, trace_id)

        check = await self._budget.can_evaluate_decision(tenant_id, account_id)
        if not check.allowed:
            logger.warning("Decision evaluation blocked by budget", reason=check.reason.value)
            await self._record_skip(tenant_id, account_id, trace_id, evaluation_id, check.reason.value)
            return EvaluationResult(evaluation_id, EvaluationOutcome.SKIPPED, reason=check.reason.value)

        proposal = await self._synthesizer.synthesize(context, evaluation_id=evaluation_id)
        policy_results = evaluate_decision_proposal(proposal, context.policy_context)

        await self._budget.consume_budget(tenant_id, account_id)
        await self._proposals.create(proposal)

        await self._ledger.append(LedgerEntry(
            event_type=LedgerEventType.DECISION_PROPOSED,
            tenant_id=tenant_id,
            account_id=account_id,
            trace_id=trace_id,
            evaluation_id=evaluation_id,
            decision_id=proposal.decision_id,
            data={
                "decision_id": proposal.decision_id,
                "decision_type": proposal.decision_type.value,
                "action_count": len(proposal.actions),
                "proposal_fingerprint": proposal.proposal_fingerprint,
                "trigger_type": trigger_type,
            },
        ))
        for result in policy_results:
            await self._ledger.append(LedgerEntry(
                event_type=LedgerEventType.POLICY_EVALUATED,
                tenant_id=tenant_id,
                account_id=account_id,
                trace_id=trace_id,
                evaluation_id=evaluation_id,
                decision_id=proposal.decision_id,
                data=result.to_dict(),
            ))

        await self._bus.publish(DecisionEvent(
            event_type=DecisionEventType.DECISION_PROPOSED,
            tenant_id=tenant_id,
            account_id=account_id,
            correlation_id=trace_id,
            data={
                "decision": proposal.to_dict(),
                "policy_evaluations": [r.to_dict() for r in policy_results],
            },
        ))

        logger.info(
            "Decision evaluation completed",
            evaluation_id=evaluation_id,
            decision_id=proposal.decision_id,
            action_count=len(proposal.actions),
        )
        return EvaluationResult(
            evaluation_id,
            EvaluationOutcome.COMPLETED,
            proposal=proposal,
            policy_evaluations=policy_results,
        )

    async def _record_skip(
        self,
        tenant_id: str,
        account_id: str,
        trace_id: str,
        evaluation_id: str,
        reason: str,
    ) -> None:
        await self._ledger.append(LedgerEntry(
            event_type=LedgerEventType.EVALUATION_SKIPPED,
            tenant_id=tenant_id,
            account_id=account_id,
            trace_id=trace_id,
            evaluation_id=evaluation_id,
            data={"reason": reason},
        ))

    async def _record_failure(
        self,
        tenant_id: str,
        account_id: str,
        trace_id: str,
        evaluation_id: str,
        reason: str,
        message: str,
    ) -> None:
        await self._ledger.append(LedgerEntry(
            event_type=LedgerEventType.EVALUATION_FAILED,
            tenant_id=tenant_id,
            account_id=account_id,
            trace_id=trace_id,
            evaluation_id=evaluation_id,
            data={"reason": reason, "error": message},
        ))


__all__ = [
    "EvaluationOutcome",
    "EvaluationResult",
    "generate_evaluation_id",
    "DecisionEvaluator",
]
