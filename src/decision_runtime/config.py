"""
Configuration for the decision runtime.

This module provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading (``DECISION_`` prefix)
- ``.env`` loading through python-dotenv
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from dotenv import find_dotenv, load_dotenv

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]


@dataclass
class AdmissionConfig:
    """Idempotency and trigger-eligibility windows."""

    idempotency_ttl_seconds: int = 86400
    trigger_cooldown_seconds: int = 86400
    lock_fallback_cooldown_seconds: int = 300

    def __post_init__(self):
        if self.idempotency_ttl_seconds <= 0:
            raise ValueError("idempotency_ttl_seconds must be positive")
        if self.trigger_cooldown_seconds < 0:
            raise ValueError("trigger_cooldown_seconds cannot be negative")
        if self.lock_fallback_cooldown_seconds <= 0:
            raise ValueError("lock_fallback_cooldown_seconds must be positive")


@dataclass
class ContextConfig:
    """Bounds applied while assembling a decision context."""

    max_active_signals: int = 50
    max_graph_refs: int = 10
    max_graph_depth: int = 2
    default_min_confidence: float = 0.70
    default_cost_budget: float = 100.0

    def __post_init__(self):
        if self.max_active_signals <= 0:
            raise ValueError("max_active_signals must be positive")
        if self.max_graph_refs < 0:
            raise ValueError("max_graph_refs cannot be negative")
        if self.max_graph_depth not in (1, 2):
            raise ValueError("max_graph_depth must be 1 or 2")
        if not 0.0 <= self.default_min_confidence <= 1.0:
            raise ValueError("default_min_confidence must be within [0, 1]")


@dataclass
class BudgetConfig:
    """Per-account decision allowances."""

    daily_decisions: int = 10
    monthly_cost: int = 100
    decision_cost: int = 1

    def __post_init__(self):
        if self.daily_decisions < 0 or self.monthly_cost < 0:
            raise ValueError("budget allowances cannot be negative")
        if self.decision_cost <= 0:
            raise ValueError("decision_cost must be positive")


@dataclass
class ModelConfig:
    """Generative model invocation settings."""

    api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_tokens: int = 4096
    temperature: float = 0.0
    timeout_seconds: float = 60.0

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be positive")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: LogLevel = "INFO"
    format: LogFormat = "json"


@dataclass
class RuntimeConfig:
    """
    Master configuration for the decision runtime.

    Aggregates all sections into one object that can be loaded from
    environment variables or constructed programmatically.
    """

    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "DECISION_") -> "RuntimeConfig":
        """
        Load settings from environment variables.

        Example:
            DECISION_IDEMPOTENCY_TTL_SECONDS=86400
            DECISION_MODEL=gpt-4o-mini
            DECISION_DAILY_DECISIONS=10
        """
        settings = cls()

        if ttl := os.getenv(f"{prefix}IDEMPOTENCY_TTL_SECONDS"):
            settings.admission.idempotency_ttl_seconds = int(ttl)
        if cooldown := os.getenv(f"{prefix}TRIGGER_COOLDOWN_SECONDS"):
            settings.admission.trigger_cooldown_seconds = int(cooldown)

        if signals := os.getenv(f"{prefix}MAX_ACTIVE_SIGNALS"):
            settings.context.max_active_signals = int(signals)
        if refs := os.getenv(f"{prefix}MAX_GRAPH_REFS"):
            settings.context.max_graph_refs = int(refs)
        if min_conf := os.getenv(f"{prefix}DEFAULT_MIN_CONFIDENCE"):
            settings.context.default_min_confidence = float(min_conf)

        if daily := os.getenv(f"{prefix}DAILY_DECISIONS"):
            settings.budget.daily_decisions = int(daily)
        if monthly := os.getenv(f"{prefix}MONTHLY_COST"):
            settings.budget.monthly_cost = int(monthly)

        if key := os.getenv(f"{prefix}OPENAI_API_KEY"):
            settings.model.api_key = key
        if url := os.getenv(f"{prefix}OPENAI_BASE_URL"):
            settings.model.base_url = url
        if model := os.getenv(f"{prefix}MODEL"):
            settings.model.model = model
        if timeout := os.getenv(f"{prefix}MODEL_TIMEOUT_SECONDS"):
            settings.model.timeout_seconds = float(timeout)

        if level := os.getenv(f"{prefix}LOG_LEVEL"):
            settings.logging.level = level.upper()  # type: ignore
        if log_format := os.getenv(f"{prefix}LOG_FORMAT"):
            settings.logging.format = log_format.lower()  # type: ignore

        # Re-run section validation after env overrides.
        for section in (settings.admission, settings.context, settings.budget, settings.model):
            section.__post_init__()

        return settings

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        if data["model"].get("api_key"):
            data["model"]["api_key"] = "***"
        return data


def load_env(path: Optional[str] = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = [
    "AdmissionConfig",
    "ContextConfig",
    "BudgetConfig",
    "ModelConfig",
    "LoggingConfig",
    "RuntimeConfig",
    "load_env",
]
