"""
In-process event bus for pub/sub.

Delivery is synchronous on the publishing thread so a subscriber sees the
events of one task in emission order. Handler failures are isolated and
logged; they never propagate into the orchestrator.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from xbuilder.events.base import Event, EventType

logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    """
    A subscription to events.

    Subscribers can filter by:
    - event_types: Only specific event types
    - run_filter: Only events for a specific run
    """

    id: str
    handler: Callable[[Event], Any]
    event_types: set[EventType] | None = None  # None = all
    run_filter: str | None = None
    enabled: bool = True

    def matches(self, event: Event) -> bool:
        """Check if this subscription should receive the event."""
        if not self.enabled:
            return False

        if self.event_types is not None and event.event_type not in self.event_types:
            return False

        if self.run_filter is not None and event.run_id != self.run_filter:
            return False

        return True


@dataclass
class EventBusStats:
    """Statistics for the event bus."""

    events_published: int = 0
    events_delivered: int = 0
    errors: int = 0
    subscriptions_active: int = 0


class EventBus:
    """
    Thread-safe in-process event bus.

    Parallel tasks publish from their own threads; the subscription list is
    copied under the lock and handlers run outside it.
    """

    def __init__(
        self,
        error_handler: Callable[[str, Event, Exception], None] | None = None,
    ) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = threading.RLock()
        self._error_handler = error_handler
        self._stats = EventBusStats()

    def subscribe(
        self,
        subscription_id: str,
        handler: Callable[[Event], Any],
        event_types: set[EventType] | None = None,
        run_filter: str | None = None,
    ) -> None:
        """
        Subscribe to events.

        Args:
            subscription_id: Unique identifier for this subscription.
            handler: Callable that receives events.
            event_types: Only receive these event types (None = all).
            run_filter: Only receive events for this run ID.
        """
        with self._lock:
            self._subscriptions[subscription_id] = Subscription(
                id=subscription_id,
                handler=handler,
                event_types=event_types,
                run_filter=run_filter,
            )
            self._stats.subscriptions_active = len(self._subscriptions)

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        with self._lock:
            if subscription_id in self._subscriptions:
                del self._subscriptions[subscription_id]
                self._stats.subscriptions_active = len(self._subscriptions)
                return True
            return False

    def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        with self._lock:
            self._stats.events_published += 1
            subscriptions = list(self._subscriptions.values())

        for subscription in subscriptions:
            if subscription.matches(event):
                self._deliver(subscription, event)

    def _deliver(self, subscription: Subscription, event: Event) -> None:
        try:
            subscription.handler(event)
            with self._lock:
                self._stats.events_delivered += 1
        except Exception as e:
            self._handle_error(subscription.id, event, e)

    def _handle_error(self, subscription_id: str, event: Event, error: Exception) -> None:
        with self._lock:
            self._stats.errors += 1

        logger.exception(
            "Error in event handler %s for event %s: %s",
            subscription_id,
            event.event_id,
            error,
        )

        if self._error_handler:
            try:
                self._error_handler(subscription_id, event, error)
            except Exception as e:
                logger.exception("Error in error handler: %s", e)

    @property
    def stats(self) -> EventBusStats:
        """Get current statistics."""
        with self._lock:
            return EventBusStats(
                events_published=self._stats.events_published,
                events_delivered=self._stats.events_delivered,
                errors=self._stats.errors,
                subscriptions_active=self._stats.subscriptions_active,
            )
