# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for wiring the notification service from settings."""

import pytest

from guardian_notify.core.config.settings import OfflineQueueSettings, Settings
from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.domains.consent.preferences import ParentPreferences
from guardian_notify.infrastructure.counters.send_counter import (
    InMemorySendCounter,
    RedisSendCounter,
)
from guardian_notify.infrastructure.events.bus import EventBus
from guardian_notify.services.factory import build_notification_service, build_send_counter

pytestmark = pytest.mark.integration


def _settings(tmp_path, **overrides) -> Settings:
    return Settings(
        _env_file=None,
        offline_queue=OfflineQueueSettings(
            database_url=f"sqlite+aiosqlite:///{tmp_path}/device.db",
            device_id="tablet-7",
        ),
        **overrides,
    )


class TestBuildSendCounter:
    """Tests for selecting the send counter backend."""

    def test_memory_backend(self, tmp_path) -> None:
        assert isinstance(build_send_counter(_settings(tmp_path)), InMemorySendCounter)

    def test_redis_backend(self, tmp_path) -> None:
        counter = build_send_counter(_settings(tmp_path, send_counter_backend="redis"))

        assert isinstance(counter, RedisSendCounter)
        assert counter.key_prefix == "guardian_notify"


class TestBuildNotificationService:
    """Tests for the fully wired service."""

    @pytest.mark.asyncio
    async def test_offline_consent_synced_on_reconnect(
        self, tmp_path, consent_store, transport, message_factory
    ) -> None:
        # Runs on the wall clock: no quiet hours.
        for guardian_id in ("mother", "father"):
            consent_store.preferences[guardian_id] = ParentPreferences(
                guardian_id=guardian_id, quiet_hours_start=0, quiet_hours_end=0
            )
        bus = EventBus()
        service = await build_notification_service(
            consent_store, transport, settings=_settings(tmp_path), event_bus=bus
        )
        assert await service.start() == 0
        try:
            await service.network_offline()
            await service.record_offline_consent(
                "father",
                "student-1",
                ConsentCategory.ACADEMIC_UPDATES,
                ConsentStatus.GRANTED,
                ConsentSource.PAPER_FORM,
                "teacher-1",
                RecorderRole.TEACHER,
                paper_form_ref="PF-3",
            )

            result = await service.send(message_factory())
            assert set(result.delivery_ids) == {"mother", "father"}
            assert transport.sent == []

            await service.network_online()
            await service.orchestrator.drain()

            assert len(consent_store.consents) == 1
            assert consent_store.consents[0].synced_at is not None
            assert len(transport.sent) == 2
        finally:
            await service.stop()
