# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory async event bus.

Carries terminal delivery outcomes, consent follow-up requests and audit
entries to whatever subscribes: a database writer, a staff dashboard feed
or a test assertion.

The EventBus supports:
- Exact event type matching (e.g., "delivery.exhausted")
- Wildcard pattern matching (e.g., "delivery.*", "audit.*")
- Multiple async handlers per event type

Example:
    bus = EventBus()

    async def on_exhausted(event: EventData) -> None:
        print(event.payload["delivery_id"])

    bus.subscribe(EventTypes.Delivery.EXHAUSTED, on_exhausted)
    await bus.publish(EventTypes.Delivery.EXHAUSTED, {"delivery_id": "d-1"})
"""

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import uuid4

from guardian_notify.utils.datetime import utc_now

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventData"], Awaitable[None]]


def _is_pattern(event_type: str) -> bool:
    return "*" in event_type or "?" in event_type


@dataclass
class EventData:
    """Published event with metadata.

    Attributes:
        event_type: The event type string.
        payload: The event payload data.
        event_id: Unique event identifier.
        timestamp: When the event was published.
        source: Component that published the event.
    """

    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


class EventBus:
    """In-memory async event bus with pattern matching support.

    Designed for single-process async use. Handler failures are logged
    and never propagate to the publisher, so a broken subscriber cannot
    stall delivery.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pattern_handlers: dict[str, list[EventHandler]] = {}
        self._event_count = 0

    def _registry(self, event_type: str) -> dict[str, list[EventHandler]]:
        return self._pattern_handlers if _is_pattern(event_type) else self._handlers

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type or pattern.

        Args:
            event_type: Event type string or fnmatch pattern.
            handler: Async function called with the EventData.
        """
        self._registry(event_type).setdefault(event_type, []).append(handler)
        logger.debug("Subscribed handler to: %s", event_type)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Unsubscribe a handler from an event type or pattern.

        Args:
            event_type: Event type string or pattern.
            handler: The handler function to remove.

        Returns:
            True if handler was found and removed, False otherwise.
        """
        registry = self._registry(event_type)
        handlers = registry.get(event_type)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del registry[event_type]
        return True

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        source: str | None = None,
        event_id: str | None = None,
    ) -> EventData:
        """Publish an event to all matching subscribers.

        Handlers run concurrently. Errors in individual handlers are
        logged and don't stop other handlers from executing.

        Args:
            event_type: The event type string.
            payload: Event data dictionary.
            source: Publishing component.
            event_id: Explicit event id, generated when omitted.

        Returns:
            EventData object with event metadata.
        """
        event = EventData(event_type=event_type, payload=payload, source=source)
        if event_id is not None:
            event.event_id = event_id

        self._event_count += 1

        handlers_to_call = list(self._handlers.get(event_type, []))
        for pattern, pattern_handlers in self._pattern_handlers.items():
            if fnmatch.fnmatch(event_type, pattern):
                handlers_to_call.extend(pattern_handlers)

        if not handlers_to_call:
            logger.debug("No handlers for event: %s", event_type)
            return event

        logger.debug("Publishing event %s to %d handlers", event_type, len(handlers_to_call))

        async def safe_call(handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.error("Handler error for event %s: %s", event_type, str(e), exc_info=True)

        await asyncio.gather(*[safe_call(handler) for handler in handlers_to_call])
        return event

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._handlers.clear()
        self._pattern_handlers.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics.

        Returns:
            Dictionary with subscription and event counts.
        """
        return {
            "event_types": list(self._handlers.keys()),
            "patterns": list(self._pattern_handlers.keys()),
            "total_handlers": sum(len(h) for h in self._handlers.values())
            + sum(len(h) for h in self._pattern_handlers.values()),
            "events_published": self._event_count,
        }
