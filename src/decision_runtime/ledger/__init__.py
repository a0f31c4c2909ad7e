"""
Append-only decision ledger.

The ledger records what happened (evaluation requests, proposals, policy
results, approvals) and serves evaluation status and decision history. It is
never consulted to decide whether something may happen.
"""

from .types import EvaluationState, EvaluationStatus, LedgerEntry, LedgerEventType
from .writer import DecisionLedger, InMemoryDecisionLedger

__all__ = [
    "LedgerEventType",
    "EvaluationState",
    "LedgerEntry",
    "EvaluationStatus",
    "DecisionLedger",
    "InMemoryDecisionLedger",
]
