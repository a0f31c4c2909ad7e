"""
Action intent storage.

Intents are immutable. Edits produce a successor intent that points back at
its parent through ``supersedes_action_intent_id``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ..errors import AlreadyExistsError, ErrorContext, ProvenanceError
from .types import ActionIntent


def validate_provenance(intent: ActionIntent) -> None:
    """An intent's proposal id and decision id are the same identifier."""
    if intent.original_proposal_id != intent.original_decision_id:
        raise ProvenanceError(
            "original_proposal_id must equal original_decision_id "
            f"({intent.original_proposal_id!r} != {intent.original_decision_id!r})",
            context=ErrorContext(
                tenant_id=intent.tenant_id,
                account_id=intent.account_id,
                trace_id=intent.trace_id,
                operation="validate_provenance",
            ),
        )


class ActionIntentStore(ABC):
    @abstractmethod
    async def create(self, intent: ActionIntent) -> None:
        ...

    @abstractmethod
    async def get_intent(self, action_intent_id: str, tenant_id: str, account_id: str) -> ActionIntent | None:
        """Load an intent scoped to (tenant, account)."""
        ...


class InMemoryActionIntentStore(ActionIntentStore):
    def __init__(self) -> None:
        self._intents: dict[tuple[str, str, str], ActionIntent] = {}
        self._lock = asyncio.Lock()

    @property
    def intents(self) -> list[ActionIntent]:
        return list(self._intents.values())

    async def create(self, intent: ActionIntent) -> None:
        validate_provenance(intent)
        key = (intent.tenant_id, intent.account_id, intent.action_intent_id)
        async with self._lock:
            if key in self._intents:
                raise AlreadyExistsError(f"Action intent already exists: {intent.action_intent_id}")
            self._intents[key] = ActionIntent.from_dict(intent.to_dict())

    async def get_intent(self, action_intent_id: str, tenant_id: str, account_id: str) -> ActionIntent | None:
        async with self._lock:
            intent = self._intents.get((tenant_id, account_id, action_intent_id))
            return ActionIntent.from_dict(intent.to_dict()) if intent else None


__all__ = [
    "validate_provenance",
    "ActionIntentStore",
    "InMemoryActionIntentStore",
]
