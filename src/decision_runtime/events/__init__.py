"""
Decision events and the event bus.
"""

from .types import (
    DecisionEventType,
    DEFAULT_EVENT_SOURCE,
    DecisionEvent,
)
from .bus import (
    EventHandler,
    EventSubscription,
    EventBus,
    InMemoryEventBus,
    EventRouter,
)

__all__ = [
    "DecisionEventType",
    "DEFAULT_EVENT_SOURCE",
    "DecisionEvent",
    "EventHandler",
    "EventSubscription",
    "EventBus",
    "InMemoryEventBus",
    "EventRouter",
]
