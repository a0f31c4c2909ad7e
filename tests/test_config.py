"""
Tests for the configuration system.
"""
import os

import pytest

from decision_runtime.config import (
    AdmissionConfig,
    BudgetConfig,
    ContextConfig,
    ModelConfig,
    RuntimeConfig,
    load_env,
)


class TestSectionDefaults:
    """Test section defaults."""

    def test_admission_defaults(self):
        """Test admission windows."""
        config = AdmissionConfig()

        assert config.idempotency_ttl_seconds == 86400
        assert config.trigger_cooldown_seconds == 86400
        assert config.lock_fallback_cooldown_seconds == 300

    def test_context_defaults(self):
        """Test context bounds."""
        config = ContextConfig()

        assert config.max_active_signals == 50
        assert config.max_graph_refs == 10
        assert config.max_graph_depth == 2
        assert config.default_min_confidence == 0.70

    def test_budget_defaults(self):
        """Test budget allowances."""
        config = BudgetConfig()

        assert (config.daily_decisions, config.monthly_cost, config.decision_cost) == (10, 100, 1)


class TestSectionValidation:
    """Test validation in __post_init__."""

    def test_ttl_positive(self):
        with pytest.raises(ValueError):
            AdmissionConfig(idempotency_ttl_seconds=0)

    def test_graph_depth(self):
        with pytest.raises(ValueError):
            ContextConfig(max_graph_depth=3)

    def test_min_confidence_range(self):
        with pytest.raises(ValueError):
            ContextConfig(default_min_confidence=1.5)

    def test_negative_budget(self):
        with pytest.raises(ValueError):
            BudgetConfig(daily_decisions=-1)

    def test_model_timeout(self):
        with pytest.raises(ValueError):
            ModelConfig(timeout_seconds=0)


class TestRuntimeConfig:
    """Test the master configuration."""

    def test_from_env(self, monkeypatch):
        """Test loading from environment."""
        monkeypatch.setenv("DECISION_DAILY_DECISIONS", "3")
        monkeypatch.setenv("DECISION_MODEL", "gpt-4o")
        monkeypatch.setenv("DECISION_LOG_LEVEL", "debug")
        monkeypatch.setenv("DECISION_MAX_ACTIVE_SIGNALS", "20")

        config = RuntimeConfig.from_env()

        assert config.budget.daily_decisions == 3
        assert config.model.model == "gpt-4o"
        assert config.logging.level == "DEBUG"
        assert config.context.max_active_signals == 20

    def test_from_env_validates(self, monkeypatch):
        """Test that env overrides are validated."""
        monkeypatch.setenv("DECISION_IDEMPOTENCY_TTL_SECONDS", "-5")

        with pytest.raises(ValueError):
            RuntimeConfig.from_env()

    def test_to_dict_redacts_key(self):
        """Test the API key is masked."""
        config = RuntimeConfig(model=ModelConfig(api_key="sk-secret"))

        assert config.to_dict()["model"]["api_key"] == "***"


class TestLoadEnv:
    def test_loads_file(self, tmp_path, monkeypatch):
        """Test loading an explicit .env file."""
        env_file = tmp_path / ".env"
        env_file.write_text("DECISION_TEST_VALUE=loaded\n")
        monkeypatch.delenv("DECISION_TEST_VALUE", raising=False)

        assert load_env(str(env_file)) is True

        assert os.environ["DECISION_TEST_VALUE"] == "loaded"
        monkeypatch.delenv("DECISION_TEST_VALUE")

    def test_missing_file(self, tmp_path, monkeypatch):
        """Test no .env found."""
        monkeypatch.chdir(tmp_path)

        assert load_env(str(tmp_path / "absent.env")) is False
