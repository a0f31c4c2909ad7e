"""
Event bus for decision event distribution.

This module provides the EventBus abstraction, an in-memory implementation
and an ``EventRouter`` that dispatches events to registered handlers.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable

from ..logging import get_logger
from .types import DecisionEvent, DecisionEventType

logger = get_logger("decision_runtime.events")

EventHandler = Callable[[DecisionEvent], Awaitable[Any]]


@dataclass
class EventSubscription:
    """Subscription to events from the event bus."""
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_types: set[DecisionEventType] | None = None  # None = all types
    tenant_id: str | None = None
    account_id: str | None = None

    def matches(self, event: DecisionEvent) -> bool:
        if self.tenant_id and event.tenant_id != self.tenant_id:
            return False
        if self.account_id and event.account_id != self.account_id:
            return False
        if self.event_types and event.event_type not in self.event_types:
            return False
        return True


class EventBus(ABC):
    """Abstract event bus for decision events."""

    @abstractmethod
    async def publish(self, event: DecisionEvent) -> None:
        """Publish an event to all matching subscribers."""
        ...

    @abstractmethod
    def subscribe(
        self,
        event_types: set[DecisionEventType] | None = None,
        tenant_id: str | None = None,
        account_id: str | None = None,
    ) -> EventSubscription:
        ...

    @abstractmethod
    async def events(self, subscription: EventSubscription) -> AsyncIterator[DecisionEvent]:
        ...

    @abstractmethod
    def unsubscribe(self, subscription: EventSubscription) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class InMemoryEventBus(EventBus):
    """In-memory event bus.

    Uses asyncio.Queue for each subscription and keeps a bounded history of
    published events. Suitable for single-process deployments and testing.
    """

    def __init__(
        self,
        max_queue_size: int = 1000,
        history_size: int = 1000,
    ):
        self._queues: dict[str, asyncio.Queue[DecisionEvent | None]] = {}
        self._subscriptions: dict[str, EventSubscription] = {}
        self._max_queue_size = max_queue_size
        self._history: deque[DecisionEvent] = deque(maxlen=history_size)
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def history(self) -> list[DecisionEvent]:
        return list(self._history)

    def published(self, event_type: DecisionEventType) -> list[DecisionEvent]:
        return [e for e in self._history if e.event_type == event_type]

    async def publish(self, event: DecisionEvent) -> None:
        if self._closed:
            raise RuntimeError("event bus is closed")

        async with self._lock:
            self._history.append(event)
            for sub_id, subscription in list(self._subscriptions.items()):
                if not subscription.matches(event):
                    continue
                queue = self._queues.get(sub_id)
                if queue is None:
                    continue
                if queue.full():
                    dropped = queue.get_nowait()
                    logger.warning(
                        "Subscription queue full, dropped oldest event",
                        subscription_id=sub_id,
                        dropped_event_type=dropped.event_type.value,
                        dropped_event_id=dropped.event_id,
                    )
                queue.put_nowait(event)

        logger.debug("Event published", event_type=event.event_type.value, event_id=event.event_id)

    def subscribe(
        self,
        event_types: set[DecisionEventType] | None = None,
        tenant_id: str | None = None,
        account_id: str | None = None,
    ) -> EventSubscription:
        subscription = EventSubscription(
            event_types=event_types,
            tenant_id=tenant_id,
            account_id=account_id,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        self._queues[subscription.subscription_id] = asyncio.Queue(maxsize=self._max_queue_size)
        return subscription

    async def events(self, subscription: EventSubscription) -> AsyncIterator[DecisionEvent]:
        """Yield events until the subscription is closed."""
        queue = self._queues.get(subscription.subscription_id)
        if not queue:
            return

        while True:
            event = await queue.get()
            if event is None:
                break
            yield event

    def unsubscribe(self, subscription: EventSubscription) -> None:
        sub_id = subscription.subscription_id
        self._subscriptions.pop(sub_id, None)
        queue = self._queues.pop(sub_id, None)
        if queue is not None and not queue.full():
            queue.put_nowait(None)

    async def close(self) -> None:
        self._closed = True
        async with self._lock:
            for queue in self._queues.values():
                if not queue.full():
                    queue.put_nowait(None)
            self._queues.clear()
            self._subscriptions.clear()


class EventRouter:
    """Routes events to the handler registered for their type."""

    def __init__(self) -> None:
        self._handlers: dict[DecisionEventType, EventHandler] = {}

    def register(self, event_type: DecisionEventType, handler: EventHandler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"Handler already registered for {event_type.value}")
        self._handlers[event_type] = handler

    def handles(self, event_type: DecisionEventType) -> bool:
        return event_type in self._handlers

    async def route(self, event: DecisionEvent) -> Any:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.warning("No handler for event", event_type=event.event_type.value, event_id=event.event_id)
            return None
        return await handler(event)


__all__ = [
    "EventHandler",
    "EventSubscription",
    "EventBus",
    "InMemoryEventBus",
    "EventRouter",
]
