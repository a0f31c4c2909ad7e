"""
Bounded, deterministic decision context assembly.

The snapshot handed to synthesis holds at most 50 active signals and at most
10 graph references within two hops of the account vertex. Assembly fails
hard when the posture read-model or tenant policy configuration is missing:
a decision never runs against absent state.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..collaborators import (
    GraphProvider,
    GraphVertex,
    PostureFactor,
    PostureProvider,
    PostureState,
    Signal,
    SignalProvider,
    TenantConfig,
    TenantConfigProvider,
    account_vertex_id,
)
from ..config import ContextConfig
from ..errors import ContextUnavailableError, ErrorContext
from ..logging import get_logger
from .types import ActionPermission, ActionType, PolicyContext, default_permission

logger = get_logger("decision_runtime.context")

CUSTOMER_SIGNAL_TYPES = frozenset({"RENEWAL_WINDOW_ENTERED"})
ENGAGEMENT_SIGNAL_TYPES = frozenset({"FIRST_ENGAGEMENT_OCCURRED"})


class LifecycleState(str, Enum):
    PROSPECT = "PROSPECT"
    SUSPECT = "SUSPECT"
    CUSTOMER = "CUSTOMER"


@dataclass
class DecisionContext:
    """Ephemeral snapshot consumed by the proposal synthesizer."""
    tenant_id: str
    account_id: str
    lifecycle_state: LifecycleState
    posture_state: PostureState
    active_signals: list[Signal]
    risk_factors: list[PostureFactor]
    opportunities: list[PostureFactor]
    unknowns: list[PostureFactor]
    graph_context_refs: list[GraphVertex]
    policy_context: PolicyContext
    trace_id: str = field(default_factory=lambda: f"trace_{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "lifecycle_state": self.lifecycle_state.value,
            "posture_state": self.posture_state.to_dict(),
            "active_signals": [s.to_dict() for s in self.active_signals],
            "risk_factors": [f.to_dict() for f in self.risk_factors],
            "opportunities": [f.to_dict() for f in self.opportunities],
            "unknowns": [f.to_dict() for f in self.unknowns],
            "graph_context_refs": [v.to_dict() for v in self.graph_context_refs],
            "policy_context": self.policy_context.to_dict(),
            "trace_id": self.trace_id,
        }


def infer_lifecycle_state(posture: PostureState, signals: list[Signal]) -> LifecycleState:
    """Customer-stage evidence first, then engagement, else prospect."""
    signal_types = {s.signal_type for s in signals}
    if posture.posture == LifecycleState.CUSTOMER.value or signal_types & CUSTOMER_SIGNAL_TYPES:
        return LifecycleState.CUSTOMER
    if signal_types & ENGAGEMENT_SIGNAL_TYPES:
        return LifecycleState.SUSPECT
    return LifecycleState.PROSPECT


def build_policy_context(
    tenant: TenantConfig,
    config: ContextConfig,
) -> PolicyContext:
    enabled = set(tenant.enabled_action_types) if tenant.enabled_action_types is not None else None
    permissions: dict[str, ActionPermission] = {}
    for action_type in ActionType:
        if enabled is not None and action_type.value not in enabled:
            continue
        permissions[action_type.value] = tenant.action_type_permissions.get(
            action_type.value,
            default_permission(action_type),
        )
    return PolicyContext(
        tenant_id=tenant.tenant_id,
        min_confidence_threshold=(
            tenant.min_confidence_threshold
            if tenant.min_confidence_threshold is not None
            else config.default_min_confidence
        ),
        action_type_permissions=permissions,
        cost_budget_remaining=(
            tenant.cost_budget_remaining
            if tenant.cost_budget_remaining is not None
            else config.default_cost_budget
        ),
    )


class ContextAssembler:
    """Builds a ``DecisionContext`` from external read-models."""

    def __init__(
        self,
        posture_provider: PostureProvider,
        signal_provider: SignalProvider,
        tenant_provider: TenantConfigProvider,
        graph_provider: GraphProvider | None = None,
        config: ContextConfig | None = None,
    ):
        self._posture = posture_provider
        self._signals = signal_provider
        self._tenants = tenant_provider
        self._graph = graph_provider
        self._config = config or ContextConfig()

    async def assemble_context(
        self,
        tenant_id: str,
        account_id: str,
        trace_id: str | None = None,
    ) -> DecisionContext:
        err_ctx = ErrorContext(tenant_id=tenant_id, account_id=account_id, trace_id=trace_id, operation="assemble_context")

        posture = await self._posture.get_posture_state(tenant_id, account_id)
        if posture is None:
            raise ContextUnavailableError(f"Posture state not found for account: {account_id}", context=err_ctx)

        tenant = await self._tenants.get_tenant_config(tenant_id)
        if tenant is None:
            raise ContextUnavailableError(f"Tenant configuration not found: {tenant_id}", context=err_ctx)

        all_signals = await self._signals.get_active_signals(tenant_id, account_id)
        # Newest first, signal_id breaks ties.
        ordered = sorted(all_signals, key=lambda s: (-s.created_at_epoch, s.signal_id))
        signals = ordered[: self._config.max_active_signals]

        refs = await self._graph_refs(tenant_id, account_id)

        context = DecisionContext(
            tenant_id=tenant_id,
            account_id=account_id,
            lifecycle_state=infer_lifecycle_state(posture, all_signals),
            posture_state=posture,
            active_signals=signals,
            risk_factors=list(posture.risk_factors),
            opportunities=list(posture.opportunities),
            unknowns=list(posture.unknowns),
            graph_context_refs=refs,
            policy_context=build_policy_context(tenant, self._config),
        )
        if trace_id:
            context.trace_id = trace_id

        logger.info(
            "Decision context assembled",
            tenant_id=tenant_id,
            account_id=account_id,
            signal_count=len(signals),
            signals_dropped=len(ordered) - len(signals),
            graph_ref_count=len(refs),
            lifecycle_state=context.lifecycle_state.value,
        )
        return context

    async def _graph_refs(self, tenant_id: str, account_id: str) -> list[GraphVertex]:
        limit = self._config.max_graph_refs
        if self._graph is None or limit == 0:
            return []

        vertex_id = account_vertex_id(tenant_id, account_id)
        refs: list[GraphVertex] = []
        seen = {vertex_id}
        for depth in range(1, self._config.max_graph_depth + 1):
            if len(refs) >= limit:
                break
            neighbors = await self._graph.get_neighbors(vertex_id, depth, limit * 2)
            for vertex in sorted(neighbors, key=lambda v: v.vertex_id):
                if vertex.vertex_id in seen:
                    continue
                seen.add(vertex.vertex_id)
                refs.append(GraphVertex(vertex.vertex_id, vertex.label, depth))
                if len(refs) >= limit:
                    break
        return refs


__all__ = [
    "CUSTOMER_SIGNAL_TYPES",
    "ENGAGEMENT_SIGNAL_TYPES",
    "LifecycleState",
    "DecisionContext",
    "infer_lifecycle_state",
    "build_policy_context",
    "ContextAssembler",
]
