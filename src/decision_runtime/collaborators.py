"""
Contracts for external collaborators consumed by the runtime.

The runtime never produces posture, signals, graph state or tenant policy.
It reads them through these protocols so each handler invocation can be
wired with real clients (or fakes in tests).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .decisions.types import ActionPermission

MATERIALIZATION_COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class PostureFactor:
    """A risk, opportunity or unknown from the posture read-model."""
    type: str
    description: str
    severity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {"type": self.type, "description": self.description}
        if self.severity is not None:
            data["severity"] = self.severity
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PostureFactor:
        return cls(
            type=str(data.get("type", "")),
            description=str(data.get("description", "")),
            severity=data.get("severity"),
        )


@dataclass
class PostureState:
    """Externally materialized account posture."""
    tenant_id: str
    account_id: str
    posture: str
    evaluated_at_epoch: float
    momentum: str | None = None
    risk_factors: list[PostureFactor] = field(default_factory=list)
    opportunities: list[PostureFactor] = field(default_factory=list)
    unknowns: list[PostureFactor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "account_id": self.account_id,
            "posture": self.posture,
            "momentum": self.momentum,
            "evaluated_at_epoch": self.evaluated_at_epoch,
            "risk_factors": [f.to_dict() for f in self.risk_factors],
            "opportunities": [f.to_dict() for f in self.opportunities],
            "unknowns": [f.to_dict() for f in self.unknowns],
        }


@dataclass(frozen=True)
class Signal:
    signal_id: str
    signal_type: str
    created_at_epoch: float
    description: str = ""
    status: str = "ACTIVE"

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_id": self.signal_id,
            "signal_type": self.signal_type,
            "created_at_epoch": self.created_at_epoch,
            "description": self.description,
            "status": self.status,
        }


@dataclass(frozen=True)
class GraphVertex:
    vertex_id: str
    label: str
    depth: int

    def to_dict(self) -> dict[str, Any]:
        return {"vertex_id": self.vertex_id, "label": self.label, "depth": self.depth}


@dataclass
class TenantConfig:
    """Tenant policy configuration. ``None`` fields fall back to defaults."""
    tenant_id: str
    min_confidence_threshold: float | None = None
    action_type_permissions: dict[str, ActionPermission] = field(default_factory=dict)
    enabled_action_types: list[str] | None = None
    cost_budget_remaining: float | None = None


def account_vertex_id(tenant_id: str, account_id: str) -> str:
    return f"ACCOUNT#{tenant_id}#{account_id}"


@runtime_checkable
class PostureProvider(Protocol):
    async def get_posture_state(self, tenant_id: str, account_id: str) -> PostureState | None:
        ...


@runtime_checkable
class SignalProvider(Protocol):
    async def get_active_signals(self, tenant_id: str, account_id: str) -> list[Signal]:
        ...


@runtime_checkable
class GraphProvider(Protocol):
    async def get_neighbors(self, vertex_id: str, depth: int, limit: int) -> list[GraphVertex]:
        """Return vertices exactly ``depth`` hops away, at most ``limit``."""
        ...


@runtime_checkable
class TenantConfigProvider(Protocol):
    async def get_tenant_config(self, tenant_id: str) -> TenantConfig | None:
        ...


@runtime_checkable
class MaterializationStatusProvider(Protocol):
    async def get_latest_status(self, tenant_id: str, account_id: str) -> str | None:
        """Materialization status for the account's latest signal."""
        ...


@runtime_checkable
class SaturationProvider(Protocol):
    async def get_saturation_score(self, tenant_id: str, account_id: str) -> float | None:
        ...


class InMemoryReadModels:
    """
    Read-model fixture store implementing every provider protocol.

    Used by the memory storage backend and by tests. Graph neighbours are
    registered per vertex and depth.
    """

    def __init__(self) -> None:
        self._postures: dict[tuple[str, str], PostureState] = {}
        self._signals: dict[tuple[str, str], list[Signal]] = {}
        self._tenants: dict[str, TenantConfig] = {}
        self._materialization: dict[tuple[str, str], str] = {}
        self._saturation: dict[tuple[str, str], float] = {}
        self._neighbors: dict[tuple[str, int], list[GraphVertex]] = {}

    def put_posture(self, posture: PostureState) -> None:
        self._postures[(posture.tenant_id, posture.account_id)] = posture

    def put_signals(self, tenant_id: str, account_id: str, signals: list[Signal]) -> None:
        self._signals[(tenant_id, account_id)] = list(signals)

    def put_tenant_config(self, config: TenantConfig) -> None:
        self._tenants[config.tenant_id] = config

    def set_materialization_status(self, tenant_id: str, account_id: str, status: str | None) -> None:
        if status is None:
            self._materialization.pop((tenant_id, account_id), None)
        else:
            self._materialization[(tenant_id, account_id)] = status

    def set_saturation_score(self, tenant_id: str, account_id: str, score: float) -> None:
        self._saturation[(tenant_id, account_id)] = score

    def put_neighbors(self, vertex_id: str, depth: int, vertices: list[GraphVertex]) -> None:
        self._neighbors[(vertex_id, depth)] = list(vertices)

    async def get_posture_state(self, tenant_id: str, account_id: str) -> PostureState | None:
        return self._postures.get((tenant_id, account_id))

    async def get_active_signals(self, tenant_id: str, account_id: str) -> list[Signal]:
        return [s for s in self._signals.get((tenant_id, account_id), []) if s.status == "ACTIVE"]

    async def get_tenant_config(self, tenant_id: str) -> TenantConfig | None:
        return self._tenants.get(tenant_id)

    async def get_latest_status(self, tenant_id: str, account_id: str) -> str | None:
        return self._materialization.get((tenant_id, account_id))

    async def get_saturation_score(self, tenant_id: str, account_id: str) -> float | None:
        return self._saturation.get((tenant_id, account_id))

    async def get_neighbors(self, vertex_id: str, depth: int, limit: int) -> list[GraphVertex]:
        return self._neighbors.get((vertex_id, depth), [])[:limit]


__all__ = [
    "MATERIALIZATION_COMPLETED",
    "PostureFactor",
    "PostureState",
    "Signal",
    "GraphVertex",
    "TenantConfig",
    "account_vertex_id",
    "PostureProvider",
    "SignalProvider",
    "GraphProvider",
    "TenantConfigProvider",
    "MaterializationStatusProvider",
    "SaturationProvider",
    "InMemoryReadModels",
]
