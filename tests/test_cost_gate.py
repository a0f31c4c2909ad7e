"""
Tests for the cost gate.
"""

from decision_runtime.admission import CostGateInput, CostGateReason, CostGateResult, evaluate_cost_gate
from decision_runtime.triggers import TriggerRegistry, TriggerRegistryEntry

from tests._decision_testkit import NOW

ENTRY = TriggerRegistry().get("SIGNAL_ARRIVED")


def _gate(**overrides):
    values = dict(trigger_type="SIGNAL_ARRIVED", registry_entry=ENTRY, now_epoch=NOW)
    values.update(overrides)
    return evaluate_cost_gate(CostGateInput(**values))


class TestCostGate:
    """Test the ordered rules of the cost gate."""

    def test_allows_with_no_history(self):
        decision = _gate()

        assert decision.result == CostGateResult.ALLOW
        assert decision.reason == CostGateReason.ALLOWED
        assert decision.evaluated_at_epoch == NOW

    def test_unknown_trigger_type_skips(self):
        decision = _gate(trigger_type="NOT_A_TRIGGER", registry_entry=None)

        assert decision.result == CostGateResult.SKIP
        assert decision.reason == CostGateReason.UNKNOWN_TRIGGER_TYPE

    def test_exhausted_budget_skips(self):
        decision = _gate(budget_remaining=0)

        assert decision.result == CostGateResult.SKIP
        assert decision.reason == CostGateReason.BUDGET_EXHAUSTED

    def test_budget_checked_before_cooldown(self):
        decision = _gate(budget_remaining=0, recency_last_run_epoch=NOW - 10)

        assert decision.reason == CostGateReason.BUDGET_EXHAUSTED

    def test_cooldown_defers_with_retry_window(self):
        decision = _gate(recency_last_run_epoch=NOW - 100)

        assert decision.result == CostGateResult.DEFER
        assert decision.reason == CostGateReason.COOLDOWN
        assert decision.retry_after_seconds == 200
        assert decision.defer_until_epoch == NOW + 200

    def test_cooldown_boundary_allows(self):
        decision = _gate(recency_last_run_epoch=NOW - ENTRY.cooldown_seconds)

        assert decision.result == CostGateResult.ALLOW

    def test_saturation_skips(self):
        decision = _gate(action_saturation_score=1.0)

        assert decision.result == CostGateResult.SKIP
        assert decision.reason == CostGateReason.MARGINAL_VALUE_LOW

    def test_partial_saturation_allows(self):
        assert _gate(action_saturation_score=0.99).result == CostGateResult.ALLOW

    def test_cooldown_checked_before_saturation(self):
        decision = _gate(recency_last_run_epoch=NOW - 1, action_saturation_score=5)

        assert decision.result == CostGateResult.DEFER

    def test_same_input_same_output(self):
        assert _gate(recency_last_run_epoch=NOW - 5) == _gate(recency_last_run_epoch=NOW - 5)

    def test_to_dict_omits_unset_defer_fields(self):
        data = _gate().to_dict()

        assert data["result"] == "ALLOW"
        assert "defer_until_epoch" not in data
        assert "retry_after_seconds" not in data


class TestTriggerRegistry:
    """Test registry defaults and overrides."""

    def test_defaults(self):
        registry = TriggerRegistry()

        assert registry.get("SIGNAL_ARRIVED").cooldown_seconds == 300
        assert registry.get("TIME_RITUAL_WEEKLY_REVIEW").cooldown_seconds == 604800
        assert registry.get("TIME_RITUAL_RENEWAL_RUNWAY").max_per_account_per_hour == 2
        assert "UNKNOWN" not in registry

    def test_override(self):
        registry = TriggerRegistry(overrides={"SIGNAL_ARRIVED": TriggerRegistryEntry(0, 10, 1)})

        assert registry.get("SIGNAL_ARRIVED").cooldown_seconds == 10
