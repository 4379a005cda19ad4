# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for the SQLite-backed offline queue and consent store."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from guardian_notify.domains.admission.models import AdmissionDecision, AdmissionReason
from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.domains.consent.records import create_offline_consent_record
from guardian_notify.domains.delivery.models import DeliveryState
from guardian_notify.domains.delivery.orchestrator import DeliveryOrchestrator
from guardian_notify.domains.delivery.scheduler import RetryScheduler
from guardian_notify.domains.messaging.models import MessagePriority
from guardian_notify.infrastructure.database.connection import DatabaseError, LocalDatabase
from guardian_notify.infrastructure.notifications.channels.base import ChannelType
from guardian_notify.infrastructure.offline.consent_store import LocalConsentStore
from guardian_notify.infrastructure.offline.queue import (
    OfflineQueue,
    OfflineQueueFullError,
    OfflineQueueItem,
)
from guardian_notify.infrastructure.offline.store import SQLAlchemyOfflineQueueStore

pytestmark = pytest.mark.integration

NOW_OFFSET = timedelta(minutes=1)


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path):
    """Create an initialized local database in a temporary file."""
    db = LocalDatabase(f"sqlite+aiosqlite:///{tmp_path}/device.db")
    await db.init()
    yield db
    await db.close()


def _item(delivery_id: str, student_id: str, created_at, **overrides) -> OfflineQueueItem:
    data = {
        "delivery_id": delivery_id,
        "student_id": student_id,
        "guardian_id": "mother",
        "target_channel": ChannelType.WHATSAPP,
        "priority": MessagePriority.HIGH,
        "payload": {"message": {"body": "Absent today"}, "channel_order": ["whatsapp", "sms"]},
        "school_id": "school-1",
        "device_id": "tablet-7",
        "created_at": created_at,
    }
    data.update(overrides)
    return OfflineQueueItem(**data)


class TestLocalDatabase:
    """Tests for LocalDatabase lifecycle."""

    @pytest.mark.asyncio
    async def test_session_before_init(self, tmp_path) -> None:
        db = LocalDatabase(f"sqlite+aiosqlite:///{tmp_path}/none.db")

        assert not db.is_initialized
        with pytest.raises(DatabaseError, match="not initialized"):
            async with db.session():
                pass

    @pytest.mark.asyncio
    async def test_check_connection(self, database) -> None:
        assert database.is_initialized
        assert await database.check_connection()


class TestSQLAlchemyOfflineQueueStore:
    """Tests for the offline queue persisted in SQLite."""

    @pytest.mark.asyncio
    async def test_items_listed_oldest_first(self, database, clock) -> None:
        store = SQLAlchemyOfflineQueueStore(database)
        await store.enqueue(_item("d-2", "student-1", clock.now + NOW_OFFSET))
        await store.enqueue(_item("d-1", "student-1", clock.now))
        await store.enqueue(_item("d-3", "student-2", clock.now + 2 * NOW_OFFSET))

        pending = await store.list_pending()

        assert [i.delivery_id for i in pending] == ["d-1", "d-2", "d-3"]
        assert pending[0].created_at == clock.now
        assert pending[0].created_at.tzinfo is not None
        assert pending[0].target_channel == ChannelType.WHATSAPP
        assert pending[0].priority == MessagePriority.HIGH
        assert pending[0].payload["channel_order"] == ["whatsapp", "sms"]
        assert pending[0].device_id == "tablet-7"
        assert pending[0].school_id == "school-1"

    @pytest.mark.asyncio
    async def test_remove_count_clear(self, database, clock) -> None:
        store = SQLAlchemyOfflineQueueStore(database)
        first = _item("d-1", "student-1", clock.now)
        await store.enqueue(first)
        await store.enqueue(_item("d-2", "student-1", clock.now))

        assert await store.remove(first.id)
        assert not await store.remove(first.id)
        assert await store.count() == 1
        assert await store.clear() == 1
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_duplicate_delivery_rejected(self, database, clock) -> None:
        store = SQLAlchemyOfflineQueueStore(database)
        await store.enqueue(_item("d-1", "student-1", clock.now))

        with pytest.raises(DatabaseError):
            await store.enqueue(_item("d-1", "student-1", clock.now))

    @pytest.mark.asyncio
    async def test_queue_bounded(self, database, clock) -> None:
        queue = OfflineQueue(SQLAlchemyOfflineQueueStore(database), max_size=2)
        await queue.enqueue(_item("d-1", "student-1", clock.now))
        await queue.enqueue(_item("d-2", "student-2", clock.now))

        with pytest.raises(OfflineQueueFullError):
            await queue.enqueue(_item("d-3", "student-1", clock.now))

        assert await queue.is_full()
        assert [i.delivery_id for i in await queue.list_pending()] == ["d-1", "d-2"]

    @pytest.mark.asyncio
    async def test_concurrent_enqueues_respect_bound(self, database, clock) -> None:
        queue = OfflineQueue(SQLAlchemyOfflineQueueStore(database), max_size=3)
        items = [_item(f"d-{i}", "student-1", clock.now) for i in range(6)]

        results = await asyncio.gather(
            *(queue.enqueue(item) for item in items), return_exceptions=True
        )

        rejected = [r for r in results if isinstance(r, OfflineQueueFullError)]
        assert len(rejected) == 3
        assert await queue.count() == 3


class TestLocalConsentStore:
    """Tests for consent captured offline and persisted locally."""

    def _record(self, status: ConsentStatus, now):
        return create_offline_consent_record(
            "mother",
            "student-1",
            ConsentCategory.ATTENDANCE_NOTIFICATIONS,
            status,
            ConsentSource.VERBAL_TEACHER,
            "teacher-1",
            RecorderRole.TEACHER,
            witness_name="Mrs Phiri",
            now=now,
        )

    @pytest.mark.asyncio
    async def test_save_and_get(self, database, clock) -> None:
        store = LocalConsentStore(database)
        record = self._record(ConsentStatus.GRANTED, clock.now)

        await store.save(record)
        loaded = await store.get("mother", "student-1", ConsentCategory.ATTENDANCE_NOTIFICATIONS)

        assert loaded is not None
        assert loaded.id == record.id
        assert loaded.status == ConsentStatus.GRANTED
        assert loaded.source == ConsentSource.VERBAL_TEACHER
        assert loaded.witness_name == "Mrs Phiri"
        assert loaded.granted_at == clock.now
        assert loaded.synced_at is None

    @pytest.mark.asyncio
    async def test_save_replaces_subject(self, database, clock) -> None:
        store = LocalConsentStore(database)
        await store.save(self._record(ConsentStatus.GRANTED, clock.now))
        withdrawn = self._record(ConsentStatus.WITHDRAWN, clock.now + NOW_OFFSET)

        await store.save(withdrawn)

        unsynced = await store.list_unsynced()
        assert [r.id for r in unsynced] == [withdrawn.id]
        assert unsynced[0].withdrawn_at == clock.now + NOW_OFFSET

    @pytest.mark.asyncio
    async def test_mark_synced(self, database, clock) -> None:
        store = LocalConsentStore(database)
        record = await store.save(self._record(ConsentStatus.GRANTED, clock.now))

        assert await store.mark_synced(record.id, clock.now)
        assert not await store.mark_synced("missing")
        assert await store.list_unsynced() == []

        loaded = await store.get("mother", "student-1", ConsentCategory.ATTENDANCE_NOTIFICATIONS)
        assert loaded is not None
        assert loaded.synced_at == clock.now


class TestOfflineRecovery:
    """Parked deliveries survive a restart of the orchestrator."""

    @pytest.mark.asyncio
    async def test_parked_delivery_replayed_after_restart(
        self, tmp_path, transport, clock, message_factory
    ) -> None:
        url = f"sqlite+aiosqlite:///{tmp_path}/restart.db"
        decision = AdmissionDecision(
            guardian_id="mother",
            allowed=True,
            reason=AdmissionReason.ALLOWED,
            rule="channel_resolution",
            channel=ChannelType.WHATSAPP,
            preferred_channel=ChannelType.WHATSAPP,
        )

        first_db = LocalDatabase(url)
        await first_db.init()
        first = DeliveryOrchestrator(
            transport,
            OfflineQueue(SQLAlchemyOfflineQueueStore(first_db)),
            scheduler=RetryScheduler(clock=clock),
            clock=clock,
            device_id="tablet-7",
        )
        await first.network_offline()
        delivery_id = await first.submit(message_factory(), decision)
        assert first.status(delivery_id).state == DeliveryState.OFFLINE_QUEUED
        await first_db.close()

        second_db = LocalDatabase(url)
        await second_db.init()
        second = DeliveryOrchestrator(
            transport,
            OfflineQueue(SQLAlchemyOfflineQueueStore(second_db)),
            scheduler=RetryScheduler(clock=clock),
            clock=clock,
            device_id="tablet-7",
        )
        try:
            assert await second.start() == 1
            await second.drain()

            assert second.status(delivery_id).state == DeliveryState.SENT
            assert transport.sent_on(ChannelType.WHATSAPP) == 1
            assert await SQLAlchemyOfflineQueueStore(second_db).count() == 0
        finally:
            await second.stop()
            await second_db.close()
