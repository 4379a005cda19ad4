# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Audit sink contract and the in-process event bus implementation.

The consent core appends an entry for every override, withdrawal and
correction. It treats the sink as fire-and-forget durable logging and
makes no assumption about how the sink chains or stores entries.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from guardian_notify.infrastructure.events.bus import EventBus
from guardian_notify.utils.datetime import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    """One audit log entry.

    Attributes:
        entity_type: Kind of entity acted on (e.g. "consent_override").
        entity_id: Identifier of the entity acted on.
        action: Action performed (e.g. "consent_override_applied").
        actor_type: Role of the actor.
        actor_id: Identifier of the actor.
        summary: Human-readable description.
        metadata: Structured details.
        occurred_at: When the action happened.
    """

    entity_type: str
    entity_id: str
    action: str
    actor_type: str
    actor_id: str | None
    summary: str
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "summary": self.summary,
            "metadata": self.metadata,
            "occurred_at": self.occurred_at.isoformat(),
        }


@runtime_checkable
class AuditSink(Protocol):
    """Append-only audit log."""

    async def append(self, entry: AuditEntry) -> str:
        """Append an entry and return its audit id."""
        ...


class EventBusAuditSink:
    """Audit sink that publishes entries as "audit.<action>" events.

    A durable subscriber (database writer, log shipper) listens on the bus.
    The returned audit id is the published event id.
    """

    def __init__(self, event_bus: EventBus) -> None:
        self._event_bus = event_bus

    async def append(self, entry: AuditEntry) -> str:
        audit_id = str(uuid4())
        await self._event_bus.publish(
            f"audit.{entry.action}",
            {"audit_id": audit_id, **entry.to_dict()},
            source="audit",
            event_id=audit_id,
        )
        logger.info("Audit %s on %s %s", entry.action, entry.entity_type, entry.entity_id)
        return audit_id
