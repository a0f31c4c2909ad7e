"""
Tests for decision context assembly.
"""

import pytest

from decision_runtime.collaborators import (
    GraphVertex,
    InMemoryReadModels,
    PostureState,
    Signal,
    TenantConfig,
    account_vertex_id,
)
from decision_runtime.config import ContextConfig
from decision_runtime.decisions import (
    ActionPermission,
    ContextAssembler,
    LifecycleState,
    RiskTier,
    build_policy_context,
    infer_lifecycle_state,
)
from decision_runtime.errors import ContextUnavailableError

from tests._decision_testkit import ACCOUNT, NOW, TENANT, seed_account


def _assembler(read_models, config=None, graph=True):
    return ContextAssembler(
        read_models,
        read_models,
        read_models,
        graph_provider=read_models if graph else None,
        config=config,
    )


class TestAssembleContext:
    """Test snapshot contents, bounds and failure modes."""

    @pytest.mark.asyncio
    async def test_builds_context(self, read_models):
        context = await _assembler(read_models).assemble_context(TENANT, ACCOUNT, trace_id="trace-1")

        assert context.trace_id == "trace-1"
        assert context.lifecycle_state == LifecycleState.CUSTOMER
        assert [s.signal_id for s in context.active_signals] == ["sig-1", "sig-2"]
        assert [f.type for f in context.risk_factors] == ["RENEWAL_RISK"]
        assert [v.vertex_id for v in context.graph_context_refs] == ["CONTACT#c1"]
        assert context.policy_context.min_confidence_threshold == 0.70
        assert context.policy_context.cost_budget_remaining == 100.0

    @pytest.mark.asyncio
    async def test_missing_posture_fails_hard(self):
        models = InMemoryReadModels()
        models.put_tenant_config(TenantConfig(tenant_id=TENANT))

        with pytest.raises(ContextUnavailableError):
            await _assembler(models).assemble_context(TENANT, ACCOUNT)

    @pytest.mark.asyncio
    async def test_missing_tenant_config_fails_hard(self):
        models = InMemoryReadModels()
        models.put_posture(PostureState(TENANT, ACCOUNT, "PROSPECT", NOW))

        with pytest.raises(ContextUnavailableError):
            await _assembler(models).assemble_context(TENANT, ACCOUNT)

    @pytest.mark.asyncio
    async def test_signals_bounded_newest_first(self, read_models):
        read_models.put_signals(TENANT, ACCOUNT, [
            Signal(f"s{i:03d}", "USAGE_TREND_CHANGE", NOW - i) for i in range(80)
        ])

        context = await _assembler(read_models).assemble_context(TENANT, ACCOUNT)

        assert len(context.active_signals) == 50
        assert context.active_signals[0].signal_id == "s000"
        assert context.active_signals[-1].signal_id == "s049"

    @pytest.mark.asyncio
    async def test_graph_refs_bounded_depth_one_first(self, read_models):
        vertex = account_vertex_id(TENANT, ACCOUNT)
        read_models.put_neighbors(vertex, 1, [GraphVertex(f"d1-{i:02d}", "Contact", 1) for i in range(6)])
        read_models.put_neighbors(vertex, 2, [GraphVertex(f"d2-{i:02d}", "Deal", 2) for i in range(10)])

        context = await _assembler(read_models).assemble_context(TENANT, ACCOUNT)

        refs = context.graph_context_refs
        assert len(refs) == 10
        assert [r.depth for r in refs] == [1] * 6 + [2] * 4
        assert refs[0].vertex_id == "d1-00"
        assert refs[6].vertex_id == "d2-00"

    @pytest.mark.asyncio
    async def test_no_graph_provider_means_no_refs(self, read_models):
        context = await _assembler(read_models, graph=False).assemble_context(TENANT, ACCOUNT)

        assert context.graph_context_refs == []

    @pytest.mark.asyncio
    async def test_assembly_is_deterministic(self, read_models):
        assembler = _assembler(read_models)

        first = await assembler.assemble_context(TENANT, ACCOUNT, trace_id="t")
        second = await assembler.assemble_context(TENANT, ACCOUNT, trace_id="t")

        assert first.to_dict() == second.to_dict()


class TestLifecycleInference:
    """Test lifecycle precedence."""

    def _posture(self, posture="PROSPECT"):
        return PostureState(TENANT, ACCOUNT, posture, NOW)

    def test_customer_posture(self):
        assert infer_lifecycle_state(self._posture("CUSTOMER"), []) == LifecycleState.CUSTOMER

    def test_customer_signal_beats_engagement(self):
        signals = [
            Signal("a", "FIRST_ENGAGEMENT_OCCURRED", NOW),
            Signal("b", "RENEWAL_WINDOW_ENTERED", NOW),
        ]

        assert infer_lifecycle_state(self._posture(), signals) == LifecycleState.CUSTOMER

    def test_engagement_signal(self):
        signals = [Signal("a", "FIRST_ENGAGEMENT_OCCURRED", NOW)]

        assert infer_lifecycle_state(self._posture(), signals) == LifecycleState.SUSPECT

    def test_default_prospect(self):
        assert infer_lifecycle_state(self._posture(), []) == LifecycleState.PROSPECT


class TestPolicyContext:
    """Test tenant policy resolution."""

    def test_defaults(self):
        ctx = build_policy_context(TenantConfig(tenant_id=TENANT), ContextConfig())

        assert len(ctx.action_type_permissions) == 11
        high = ctx.action_type_permissions["REQUEST_RENEWAL_MEETING"]
        assert high.risk_tier == RiskTier.HIGH
        assert high.min_confidence == 0.75
        assert high.default_approval_required is True

    def test_tenant_overrides(self):
        override = ActionPermission(RiskTier.LOW, 0.5, False)
        tenant = TenantConfig(
            tenant_id=TENANT,
            min_confidence_threshold=0.8,
            action_type_permissions={"CREATE_OPPORTUNITY": override},
            enabled_action_types=["CREATE_OPPORTUNITY", "CREATE_INTERNAL_NOTE"],
            cost_budget_remaining=5,
        )

        ctx = build_policy_context(tenant, ContextConfig())

        assert ctx.min_confidence_threshold == 0.8
        assert ctx.cost_budget_remaining == 5
        assert sorted(ctx.action_type_permissions) == ["CREATE_INTERNAL_NOTE", "CREATE_OPPORTUNITY"]
        assert ctx.action_type_permissions["CREATE_OPPORTUNITY"] is override
