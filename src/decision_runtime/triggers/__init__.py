"""
Trigger registry and coarse evaluation eligibility.
"""

from .types import (
    RunTriggerType,
    EvaluationTriggerType,
    TriggerRegistryEntry,
    DEFAULT_TRIGGER_REGISTRY,
    TriggerRegistry,
    TriggerEvent,
    TriggerEvaluation,
)
from .evaluator import (
    HIGH_SIGNAL_TYPES,
    TriggerEvaluator,
    infer_trigger_type,
)

__all__ = [
    "RunTriggerType",
    "EvaluationTriggerType",
    "TriggerRegistryEntry",
    "DEFAULT_TRIGGER_REGISTRY",
    "TriggerRegistry",
    "TriggerEvent",
    "TriggerEvaluation",
    "HIGH_SIGNAL_TYPES",
    "TriggerEvaluator",
    "infer_trigger_type",
]
