"""
Proposal storage.

Stored proposals are the only source of truth for approval and rejection.
Records are create-only: a proposal is never overwritten once written.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ..errors import AlreadyExistsError, ErrorContext
from .types import DecisionProposal


class ProposalStore(ABC):
    """Abstract interface for decision proposal persistence."""

    @abstractmethod
    async def create(self, proposal: DecisionProposal) -> None:
        """Persist ``proposal``. Raises ``AlreadyExistsError`` if the id is taken."""
        ...

    @abstractmethod
    async def get_proposal(self, decision_id: str, tenant_id: str) -> DecisionProposal | None:
        """Load a proposal. Returns None when missing or owned by another tenant."""
        ...

    @abstractmethod
    async def list_for_account(self, tenant_id: str, account_id: str, limit: int = 50) -> list[DecisionProposal]:
        """Proposals for an account, newest first."""
        ...


class InMemoryProposalStore(ProposalStore):
    def __init__(self) -> None:
        self._proposals: dict[str, DecisionProposal] = {}
        self._order: list[str] = []
        self._lock = asyncio.Lock()

    async def create(self, proposal: DecisionProposal) -> None:
        async with self._lock:
            if proposal.decision_id in self._proposals:
                raise AlreadyExistsError(
                    f"Proposal already exists: {proposal.decision_id}",
                    context=ErrorContext(
                        tenant_id=proposal.tenant_id,
                        account_id=proposal.account_id,
                        operation="create_proposal",
                    ),
                )
            # Stored as a copy so later mutation of the caller's object is not visible.
            self._proposals[proposal.decision_id] = DecisionProposal.from_dict(proposal.to_dict())
            self._order.append(proposal.decision_id)

    async def get_proposal(self, decision_id: str, tenant_id: str) -> DecisionProposal | None:
        async with self._lock:
            proposal = self._proposals.get(decision_id)
            if proposal is None or proposal.tenant_id != tenant_id:
                return None
            return DecisionProposal.from_dict(proposal.to_dict())

    async def list_for_account(self, tenant_id: str, account_id: str, limit: int = 50) -> list[DecisionProposal]:
        async with self._lock:
            matches = [
                self._proposals[decision_id]
                for decision_id in reversed(self._order)
                if self._proposals[decision_id].tenant_id == tenant_id
                and self._proposals[decision_id].account_id == account_id
            ]
            return [DecisionProposal.from_dict(p.to_dict()) for p in matches[:limit]]


__all__ = [
    "ProposalStore",
    "InMemoryProposalStore",
]
