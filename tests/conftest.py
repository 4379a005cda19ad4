# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- A controllable clock
- A scripted transport gateway
- An in-memory offline queue store
- A recording audit sink
- Guardian and message builders
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
)
from guardian_notify.domains.consent.preferences import ParentPreferences
from guardian_notify.domains.delivery.orchestrator import DeliveryOrchestrator
from guardian_notify.domains.delivery.scheduler import RetryScheduler
from guardian_notify.domains.guardians.models import (
    Guardian,
    GuardianRole,
    GuardianStudentLink,
)
from guardian_notify.domains.messaging.models import NotificationMessage
from guardian_notify.infrastructure.audit.sink import AuditEntry
from guardian_notify.infrastructure.events.bus import EventBus, EventData
from guardian_notify.infrastructure.notifications.channels.base import (
    ChannelAvailability,
    ChannelResult,
    ChannelType,
    FailureReason,
    SendStatus,
    TransportOfflineError,
)
from guardian_notify.infrastructure.offline.queue import OfflineQueue, OfflineQueueItem
from guardian_notify.services.stores import InMemoryConsentStore

# Tuesday, 12:00 in Lusaka (UTC+2)
NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
STUDENT_ID = "student-1"


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Clock returning a settable time."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeTransport:
    """TransportGateway with scripted per-channel outcomes.

    Outcomes are consumed in order per channel; when a script runs out the
    default outcome is used. An outcome is "ok", "fail", "offline",
    "hang", a FailureReason to fail with, or an exception instance to raise.
    """

    def __init__(self, default: str = "ok") -> None:
        self.default = default
        self.scripts: dict[ChannelType, list[Any]] = {}
        self.availability: dict[str, ChannelAvailability] = {}
        self.sent: list[tuple[ChannelType, str, str]] = []

    def script(self, channel: ChannelType, *outcomes: Any) -> None:
        self.scripts.setdefault(channel, []).extend(outcomes)

    def sent_on(self, channel: ChannelType) -> int:
        return sum(1 for c, _, _ in self.sent if c == channel)

    async def capabilities(self, guardian_id: str) -> ChannelAvailability:
        return self.availability.get(
            guardian_id,
            ChannelAvailability(whatsapp=True, sms=True, email=True),
        )

    async def send(
        self,
        channel: ChannelType,
        guardian_id: str,
        body: str,
        subject: str | None = None,
    ) -> ChannelResult:
        self.sent.append((channel, guardian_id, body))
        script = self.scripts.get(channel)
        outcome = script.pop(0) if script else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "offline":
            raise TransportOfflineError("network unreachable")
        if outcome == "hang":
            await asyncio.sleep(3600)
        if isinstance(outcome, FailureReason):
            return ChannelResult(
                channel=channel,
                status=SendStatus.FAILED,
                error_message=f"{channel.value} failed: {outcome.value}",
                failure_reason=outcome,
            )
        if outcome == "fail":
            return ChannelResult(
                channel=channel,
                status=SendStatus.FAILED,
                error_message=f"{channel.value} provider rejected the message",
            )
        return ChannelResult(
            channel=channel,
            status=SendStatus.SENT,
            message_id=f"{channel.value}-{len(self.sent)}",
        )


class FakeOfflineQueueStore:
    """OfflineQueueStore kept in memory."""

    def __init__(self) -> None:
        self.items: list[OfflineQueueItem] = []

    async def enqueue(self, item: OfflineQueueItem) -> None:
        self.items.append(item)

    async def remove(self, item_id: str) -> bool:
        before = len(self.items)
        self.items = [i for i in self.items if i.id != item_id]
        return len(self.items) < before

    async def list_pending(self) -> list[OfflineQueueItem]:
        return sorted(self.items, key=lambda i: i.created_at)

    async def count(self) -> int:
        return len(self.items)

    async def clear(self) -> int:
        removed = len(self.items)
        self.items = []
        return removed


class FakeAuditSink:
    """AuditSink recording entries."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> str:
        self.entries.append(entry)
        return f"audit-{len(self.entries)}"


class EventRecorder:
    """Collects events published on a bus."""

    def __init__(self, bus: EventBus, pattern: str = "*") -> None:
        self.events: list[EventData] = []
        bus.subscribe(pattern, self._record)

    async def _record(self, event: EventData) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[EventData]:
        return [e for e in self.events if e.event_type == event_type]


# =============================================================================
# Builders
# =============================================================================


def make_message(**overrides: Any) -> NotificationMessage:
    data: dict[str, Any] = {
        "category": ConsentCategory.ACADEMIC_UPDATES,
        "student_id": STUDENT_ID,
        "body": "Amara scored 82% in the mathematics test.",
        "created_at": NOW,
    }
    data.update(overrides)
    return NotificationMessage(**data)


def make_consent(
    guardian_id: str,
    category: ConsentCategory = ConsentCategory.ACADEMIC_UPDATES,
    status: ConsentStatus = ConsentStatus.GRANTED,
    **overrides: Any,
) -> ConsentRecord:
    data: dict[str, Any] = {
        "id": f"consent-{guardian_id}-{category.value}",
        "guardian_id": guardian_id,
        "student_id": STUDENT_ID,
        "category": category,
        "status": status,
        "source": ConsentSource.PAPER_FORM,
        "created_at": NOW - timedelta(days=30),
    }
    data.update(overrides)
    return ConsentRecord(**data)


def make_guardian(guardian_id: str, name: str | None = None, number: int = 1) -> Guardian:
    return Guardian(
        id=guardian_id,
        display_name=name or guardian_id.title(),
        phone=f"+26097000{number:04d}",
        whatsapp_number=f"+26097000{number:04d}",
        email=f"{guardian_id}@example.com",
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def message_factory() -> Callable[..., NotificationMessage]:
    return make_message


@pytest.fixture
def consent_factory() -> Callable[..., ConsentRecord]:
    return make_consent


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def offline_store() -> FakeOfflineQueueStore:
    return FakeOfflineQueueStore()


@pytest.fixture
def offline_queue(offline_store: FakeOfflineQueueStore) -> OfflineQueue:
    return OfflineQueue(offline_store, max_size=100)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def audit_sink() -> FakeAuditSink:
    return FakeAuditSink()


@pytest.fixture
def orchestrator(
    transport: FakeTransport,
    offline_queue: OfflineQueue,
    event_bus: EventBus,
    clock: FakeClock,
) -> DeliveryOrchestrator:
    return DeliveryOrchestrator(
        transport,
        offline_queue,
        scheduler=RetryScheduler(clock=clock),
        event_bus=event_bus,
        clock=clock,
        device_id="tablet-7",
    )


@pytest.fixture
def consent_store() -> InMemoryConsentStore:
    """Two guardians for one student: a primary mother and a secondary father."""
    store = InMemoryConsentStore()
    store.add_guardian(
        make_guardian("mother", "Grace Banda", 1),
        GuardianStudentLink.for_role("mother", STUDENT_ID, GuardianRole.PRIMARY_GUARDIAN),
    )
    store.add_guardian(
        make_guardian("father", "Joseph Banda", 2),
        GuardianStudentLink.for_role("father", STUDENT_ID, GuardianRole.SECONDARY_GUARDIAN),
    )
    store.preferences["mother"] = ParentPreferences(guardian_id="mother")
    store.preferences["father"] = ParentPreferences(guardian_id="father")
    return store
