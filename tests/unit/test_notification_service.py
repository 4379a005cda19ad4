# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the NotificationService facade."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from guardian_notify.core.config.settings import Settings
from guardian_notify.domains.admission.models import AdmissionReason
from guardian_notify.domains.consent.exceptions import (
    ConsentOverrideError,
    InvalidConsentSourceError,
    PreferenceInvariantError,
    WithdrawnConsentOverrideError,
)
from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentClarity,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.domains.consent.overrides import OverrideReason, OverrideRequest
from guardian_notify.domains.consent.preferences import ParentPreferences, PreferredChannel
from guardian_notify.domains.consent.resolver import OverrideRole
from guardian_notify.domains.delivery.models import DeliveryState
from guardian_notify.domains.guardians.models import Guardian, GuardianRole, GuardianStudentLink
from guardian_notify.infrastructure.counters.send_counter import InMemorySendCounter
from guardian_notify.infrastructure.events.types import EventTypes
from guardian_notify.infrastructure.notifications.channels.base import ChannelType
from guardian_notify.services.notification_service import (
    GuardianNotFoundError,
    NotificationService,
    OfflineConsentUnavailableError,
)

STUDENT_ID = "student-1"


class FakeLocalConsentStore:
    """Local consent store kept in memory."""

    def __init__(self) -> None:
        self.records: dict[str, ConsentRecord] = {}

    async def save(self, record: ConsentRecord) -> ConsentRecord:
        subject = (record.guardian_id, record.student_id, record.category)
        self.records = {
            k: r
            for k, r in self.records.items()
            if (r.guardian_id, r.student_id, r.category) != subject
        }
        self.records[record.id] = record
        return record

    async def get(
        self,
        guardian_id: str,
        student_id: str,
        category: ConsentCategory,
    ) -> ConsentRecord | None:
        for record in self.records.values():
            if (record.guardian_id, record.student_id, record.category) == (
                guardian_id,
                student_id,
                category,
            ):
                return record
        return None

    async def list_unsynced(self) -> list[ConsentRecord]:
        unsynced = [r for r in self.records.values() if r.synced_at is None]
        return sorted(unsynced, key=lambda r: r.created_at)

    async def mark_synced(self, record_id: str, synced_at: datetime | None = None) -> bool:
        record = self.records.get(record_id)
        if record is None:
            return False
        self.records[record_id] = record.model_copy(update={"synced_at": synced_at})
        return True


@pytest.fixture
def counter() -> InMemorySendCounter:
    return InMemorySendCounter()


@pytest.fixture
def local_consents() -> FakeLocalConsentStore:
    return FakeLocalConsentStore()


@pytest.fixture
def service(
    consent_store,
    transport,
    orchestrator,
    counter,
    audit_sink,
    event_bus,
    clock,
    local_consents,
) -> NotificationService:
    return NotificationService(
        consent_store,
        transport,
        orchestrator,
        counter,
        audit_sink,
        local_consent_store=local_consents,
        event_bus=event_bus,
        settings=Settings(_env_file=None),
        clock=clock,
    )


@pytest.fixture
def aunt(consent_store) -> str:
    """Link an informational contact to the student."""
    consent_store.add_guardian(
        Guardian(id="aunt", display_name="Ruth Phiri", phone="+260970000003"),
        GuardianStudentLink.for_role("aunt", STUDENT_ID, GuardianRole.INFORMATIONAL_CONTACT),
    )
    return "aunt"


def _override_request(
    message_id: str,
    guardian_id: str = "father",
    *,
    student_id: str = STUDENT_ID,
    category: ConsentCategory = ConsentCategory.ACADEMIC_UPDATES,
) -> OverrideRequest:
    return OverrideRequest(
        message_id=message_id,
        guardian_id=guardian_id,
        student_id=student_id,
        category=category,
        reason=OverrideReason.PAPER_CONSENT_PENDING,
        overridden_by="teacher-1",
        overridden_by_role=OverrideRole.TEACHER,
    )


class TestAdmit:
    """Tests for NotificationService.admit."""

    @pytest.mark.asyncio
    async def test_missing_consent_requests_follow_up(
        self, service, message_factory, events
    ) -> None:
        decisions = await service.admit(message_factory())

        assert [d.guardian_id for d in decisions] == ["mother", "father"]
        assert all(d.reason == AdmissionReason.CONSENT_NOT_GRANTED for d in decisions)

        follow_ups = events.of_type(EventTypes.Consent.FOLLOW_UP_REQUESTED)
        assert len(follow_ups) == 2
        assert follow_ups[0].payload["guardian_id"] == "mother"
        assert follow_ups[0].source == "admission"

    @pytest.mark.asyncio
    async def test_one_guardian_consent_admits_household(
        self, service, consent_store, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("mother"))

        decisions = await service.admit(message_factory())

        assert all(d.allowed for d in decisions)
        assert all(d.channel == ChannelType.WHATSAPP for d in decisions)

    @pytest.mark.asyncio
    async def test_unknown_guardian(self, service, message_factory) -> None:
        decisions = await service.admit(message_factory(), ["mother", "stranger"])

        assert decisions[1].guardian_id == "stranger"
        assert decisions[1].reason == AdmissionReason.CONTACT_NOT_FOUND
        assert decisions[1].rule == "contact_lookup"

    @pytest.mark.asyncio
    async def test_emergency_reaches_every_guardian_by_sms(
        self, service, message_factory
    ) -> None:
        message = message_factory(category=ConsentCategory.EMERGENCY_ALERTS, body="School closed")

        decisions = await service.admit(message)

        assert all(d.reason == AdmissionReason.EMERGENCY_OVERRIDE for d in decisions)
        assert all(d.channel == ChannelType.SMS for d in decisions)

    @pytest.mark.asyncio
    async def test_emergency_skips_contacts_without_emergency_rights(
        self, service, aunt, message_factory
    ) -> None:
        message = message_factory(category=ConsentCategory.EMERGENCY_ALERTS, body="School closed")

        decisions = await service.admit(message)

        assert [d.guardian_id for d in decisions] == ["mother", "father"]

    @pytest.mark.asyncio
    async def test_routine_message_skips_informational_contact(
        self, service, aunt, message_factory
    ) -> None:
        message = message_factory(category=ConsentCategory.ATTENDANCE_NOTIFICATIONS)

        decisions = await service.admit(message)

        assert [d.guardian_id for d in decisions] == ["mother", "father"]

    @pytest.mark.asyncio
    async def test_academic_report_reaches_informational_contact(
        self, service, aunt, message_factory
    ) -> None:
        decisions = await service.admit(message_factory())

        assert [d.guardian_id for d in decisions] == ["mother", "father", "aunt"]

    @pytest.mark.asyncio
    async def test_requested_contact_without_rights_is_blocked(
        self, service, aunt, message_factory
    ) -> None:
        message = message_factory(is_emergency=True, body="School closed")

        decisions = await service.admit(message, ["aunt", "mother"])

        assert decisions[0].guardian_id == "aunt"
        assert not decisions[0].allowed
        assert decisions[0].reason == AdmissionReason.NOT_A_RECIPIENT
        assert decisions[0].rule == "link_rights"
        assert decisions[1].reason == AdmissionReason.EMERGENCY_OVERRIDE

    @pytest.mark.asyncio
    async def test_guardian_without_stored_preferences_gets_defaults(
        self, service, consent_store, message_factory, consent_factory
    ) -> None:
        del consent_store.preferences["father"]
        consent_store.consents.append(consent_factory("father"))

        decisions = await service.admit(message_factory(), ["father"])

        assert decisions[0].allowed
        assert decisions[0].preferred_channel == ChannelType.WHATSAPP


class TestSubmit:
    """Tests for submission and the weekly cap reservation."""

    @pytest.mark.asyncio
    async def test_send_delivers_to_admitted_guardians(
        self, service, consent_store, transport, counter, clock, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("mother"))

        result = await service.send(message_factory())
        await service.orchestrator.drain()

        assert set(result.delivery_ids) == {"mother", "father"}
        assert result.blocked == {}
        assert transport.sent_on(ChannelType.WHATSAPP) == 2
        assert await counter.current("mother", clock.now) == 1
        assert service.status(result.delivery_ids["mother"]).state == DeliveryState.SENT

    @pytest.mark.asyncio
    async def test_blocked_guardians_reported(self, service, transport, message_factory) -> None:
        result = await service.send(message_factory())

        assert result.delivery_ids == {}
        assert result.to_dict()["blocked"] == {
            "mother": "consent_not_granted",
            "father": "consent_not_granted",
        }
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_cap_filled_between_admit_and_submit(
        self, service, consent_store, counter, clock, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("mother"))
        consent_store.preferences["father"] = ParentPreferences(
            guardian_id="father", max_messages_per_week=1
        )
        message = message_factory()

        decisions = await service.admit(message)
        assert all(d.allowed for d in decisions)

        assert await counter.try_acquire("father", 1, clock.now)
        result = await service.submit(message, decisions)

        assert list(result.delivery_ids) == ["mother"]
        assert result.blocked == {"father": AdmissionReason.WEEKLY_LIMIT_EXCEEDED}

    @pytest.mark.asyncio
    async def test_emergency_does_not_use_weekly_cap(
        self, service, counter, clock, message_factory
    ) -> None:
        message = message_factory(category=ConsentCategory.EMERGENCY_ALERTS, body="School closed")

        result = await service.send(message)
        await service.orchestrator.drain()

        assert len(result.delivery_ids) == 2
        assert await counter.current("mother", clock.now) == 0

    @pytest.mark.asyncio
    async def test_failed_submission_releases_reservation(
        self, service, consent_store, counter, clock, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("mother"))
        message = message_factory()
        decisions = await service.admit(message, ["mother"])

        with patch.object(
            service.orchestrator, "submit", AsyncMock(side_effect=RuntimeError("disk full"))
        ):
            with pytest.raises(RuntimeError, match="disk full"):
                await service.submit(message, decisions)

        assert await counter.current("mother", clock.now) == 0

    @pytest.mark.asyncio
    async def test_body_personalized_per_guardian(
        self, service, consent_store, transport, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("mother"))
        message = message_factory(body="Dear {{ guardian_name }}, the term report is ready.")

        await service.send(message)
        await service.orchestrator.drain()

        bodies = {guardian_id: body for _, guardian_id, body in transport.sent}
        assert bodies["mother"] == "Dear Grace Banda, the term report is ready."
        assert bodies["father"] == "Dear Joseph Banda, the term report is ready."

    @pytest.mark.asyncio
    async def test_cancel_and_list_deliveries(
        self, service, consent_store, transport, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("mother"))
        transport.script(ChannelType.WHATSAPP, "fail")
        message = message_factory()

        result = await service.send(message)
        await service.orchestrator.drain()

        retrying = [
            s for s in service.list_deliveries(message.id) if s.state == DeliveryState.AWAITING_RETRY
        ]
        assert len(retrying) == 1
        assert await service.cancel(retrying[0].delivery_id) == DeliveryState.CANCELLED
        assert len(service.list_deliveries(message.id)) == len(result.delivery_ids)


class TestOverride:
    """Tests for staff overrides through the service."""

    @pytest.mark.asyncio
    async def test_teacher_override_admits_held_message(
        self, service, audit_sink, events, message_factory
    ) -> None:
        message = message_factory()

        decision, entry = await service.override(message, _override_request(message.id))

        assert decision.allowed
        assert decision.reason == AdmissionReason.OVERRIDE_APPLIED
        assert entry is not None
        assert entry.audit_id == "audit-1"
        assert entry.original_status == ConsentStatus.NOT_REQUESTED
        assert entry.original_clarity == ConsentClarity.MISSING
        assert len(audit_sink.entries) == 1

        applied = events.of_type(EventTypes.Consent.OVERRIDE_APPLIED)
        assert len(applied) == 1
        assert applied[0].payload["blocked_reason"] == "consent_not_granted"
        assert applied[0].payload["allowed"] is True

    @pytest.mark.asyncio
    async def test_override_not_needed(
        self, service, consent_store, audit_sink, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("father"))
        message = message_factory()

        decision, entry = await service.override(message, _override_request(message.id))

        assert decision.allowed
        assert entry is None
        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_withdrawn_consent_cannot_be_overridden(
        self, service, consent_store, audit_sink, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("father", status=ConsentStatus.WITHDRAWN))
        message = message_factory()

        with pytest.raises(WithdrawnConsentOverrideError):
            await service.override(message, _override_request(message.id))

        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_override_for_other_message(self, service, message_factory) -> None:
        with pytest.raises(ConsentOverrideError, match="not"):
            await service.override(message_factory(), _override_request("other-message"))

    @pytest.mark.asyncio
    async def test_override_category_must_match_message(
        self, service, audit_sink, events, message_factory
    ) -> None:
        message = message_factory(category=ConsentCategory.FEE_COMMUNICATIONS)
        request = _override_request(message.id, category=ConsentCategory.ACADEMIC_UPDATES)

        with pytest.raises(ConsentOverrideError, match="fee_communications"):
            await service.override(message, request)

        assert audit_sink.entries == []
        assert events.of_type(EventTypes.Consent.OVERRIDE_APPLIED) == []

    @pytest.mark.asyncio
    async def test_override_student_must_match_message(
        self, service, audit_sink, message_factory
    ) -> None:
        message = message_factory()
        request = _override_request(message.id, student_id="student-2")

        with pytest.raises(ConsentOverrideError, match="student-2"):
            await service.override(message, request)

        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_override_for_contact_without_rights(
        self, service, aunt, audit_sink, message_factory
    ) -> None:
        message = message_factory(category=ConsentCategory.ATTENDANCE_NOTIFICATIONS)
        request = _override_request(
            message.id, "aunt", category=ConsentCategory.ATTENDANCE_NOTIFICATIONS
        )

        with pytest.raises(ConsentOverrideError, match="not a recipient"):
            await service.override(message, request)

        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_override_unknown_guardian(self, service, message_factory) -> None:
        message = message_factory()

        with pytest.raises(GuardianNotFoundError):
            await service.override(message, _override_request(message.id, "stranger"))


class TestOfflineConsent:
    """Tests for consent captured on the device."""

    @pytest.mark.asyncio
    async def test_unsynced_local_consent_admits(
        self, service, consent_store, local_consents, clock, message_factory
    ) -> None:
        record = await service.record_offline_consent(
            "father",
            STUDENT_ID,
            ConsentCategory.ACADEMIC_UPDATES,
            ConsentStatus.GRANTED,
            ConsentSource.PAPER_FORM,
            "teacher-1",
            RecorderRole.TEACHER,
            paper_form_ref="PF-12",
        )

        assert record.synced_at is None
        decisions = await service.admit(message_factory(), ["father"])
        assert decisions[0].allowed

        await service.network_online()

        assert len(consent_store.consents) == 1
        assert consent_store.consents[0].synced_at == clock.now
        assert await local_consents.list_unsynced() == []

    @pytest.mark.asyncio
    async def test_local_consent_disagreeing_with_server_is_conflicting(
        self, service, consent_store, message_factory, consent_factory
    ) -> None:
        consent_store.consents.append(consent_factory("father", status=ConsentStatus.WITHDRAWN))
        await service.record_offline_consent(
            "father",
            STUDENT_ID,
            ConsentCategory.ACADEMIC_UPDATES,
            ConsentStatus.GRANTED,
            ConsentSource.PAPER_FORM,
            "teacher-1",
            RecorderRole.TEACHER,
        )

        decisions = await service.admit(message_factory(), ["father"])

        assert not decisions[0].allowed
        assert decisions[0].consent is not None
        assert decisions[0].consent.clarity == ConsentClarity.CONFLICTING

    @pytest.mark.asyncio
    async def test_fee_consent_must_be_on_paper(self, service) -> None:
        with pytest.raises(InvalidConsentSourceError):
            await service.record_offline_consent(
                "mother",
                STUDENT_ID,
                ConsentCategory.FEE_COMMUNICATIONS,
                ConsentStatus.GRANTED,
                ConsentSource.VERBAL_TEACHER,
                "teacher-1",
                RecorderRole.TEACHER,
                witness_name="Mrs Phiri",
            )

    @pytest.mark.asyncio
    async def test_without_local_store(
        self, consent_store, transport, orchestrator, counter, audit_sink, clock
    ) -> None:
        service = NotificationService(
            consent_store,
            transport,
            orchestrator,
            counter,
            audit_sink,
            settings=Settings(_env_file=None),
            clock=clock,
        )

        with pytest.raises(OfflineConsentUnavailableError):
            await service.record_offline_consent(
                "mother",
                STUDENT_ID,
                ConsentCategory.ACADEMIC_UPDATES,
                ConsentStatus.GRANTED,
                ConsentSource.PAPER_FORM,
                "teacher-1",
                RecorderRole.TEACHER,
            )
        assert await service.sync_local_consents() == 0


class TestChangePreferences:
    """Tests for preference changes through the service."""

    @pytest.mark.asyncio
    async def test_channel_change_saved(self, service, consent_store) -> None:
        updated, entry = await service.change_preferences(
            "mother", {"preferred_channel": PreferredChannel.SMS}, "mother", RecorderRole.PARENT
        )

        assert updated.preferred_channel == PreferredChannel.SMS
        assert entry is not None
        assert consent_store.preferences["mother"].preferred_channel == PreferredChannel.SMS

    @pytest.mark.asyncio
    async def test_emergency_cannot_be_disabled(self, service) -> None:
        with pytest.raises(PreferenceInvariantError):
            await service.change_preferences(
                "mother", {"receives_emergency": False}, "mother", RecorderRole.PARENT
            )

    @pytest.mark.asyncio
    async def test_unknown_guardian(self, service) -> None:
        with pytest.raises(GuardianNotFoundError):
            await service.change_preferences(
                "stranger", {"receives_announcements": False}, "admin-1", RecorderRole.ADMIN
            )
