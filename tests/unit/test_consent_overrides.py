# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for role-gated consent overrides and the audit sink."""

import pytest
from pydantic import ValidationError

from guardian_notify.domains.consent.exceptions import (
    OverrideNotPermittedError,
    WithdrawnConsentOverrideError,
)
from guardian_notify.domains.consent.models import ConsentCategory, ConsentClarity, ConsentStatus
from guardian_notify.domains.consent.overrides import (
    ConsentOverrideService,
    OverrideReason,
    OverrideRequest,
    can_role_override,
)
from guardian_notify.domains.consent.resolver import OverrideRole
from guardian_notify.infrastructure.audit.sink import AuditEntry, EventBusAuditSink
from guardian_notify.infrastructure.events.bus import EventBus, EventData


def _request(
    category: ConsentCategory = ConsentCategory.ACADEMIC_UPDATES,
    role: OverrideRole = OverrideRole.TEACHER,
    reason: OverrideReason = OverrideReason.PAPER_CONSENT_PENDING,
    witness_name: str | None = None,
) -> OverrideRequest:
    return OverrideRequest(
        message_id="m-1",
        guardian_id="g-1",
        student_id="s-1",
        category=category,
        reason=reason,
        overridden_by="staff-1",
        overridden_by_role=role,
        witness_name=witness_name,
    )


class TestOverrideRequest:
    """Tests for OverrideRequest validation."""

    def test_verbal_confirmation_requires_witness(self) -> None:
        with pytest.raises(ValidationError, match="witness"):
            _request(reason=OverrideReason.VERBAL_CONFIRMATION)

    def test_verbal_confirmation_with_witness(self) -> None:
        request = _request(reason=OverrideReason.VERBAL_CONFIRMATION, witness_name="Mr Zulu")

        assert request.expires_after_send

    def test_role_permissions_follow_category_rules(self) -> None:
        assert can_role_override(ConsentCategory.ACADEMIC_UPDATES, OverrideRole.TEACHER)
        assert not can_role_override(ConsentCategory.FEE_COMMUNICATIONS, OverrideRole.TEACHER)
        assert can_role_override(ConsentCategory.FEE_COMMUNICATIONS, OverrideRole.ADMIN)
        assert not can_role_override(ConsentCategory.EMERGENCY_ALERTS, OverrideRole.ADMIN)


class TestConsentOverrideService:
    """Tests for ConsentOverrideService.apply."""

    @pytest.mark.asyncio
    async def test_override_recorded_in_audit(self, audit_sink) -> None:
        service = ConsentOverrideService(audit_sink)

        entry = await service.apply(_request(), None, ConsentClarity.MISSING)

        assert entry.audit_id == "audit-1"
        assert entry.original_status == ConsentStatus.NOT_REQUESTED
        assert entry.original_clarity == ConsentClarity.MISSING

        audit = audit_sink.entries[0]
        assert audit.entity_type == "consent_override"
        assert audit.entity_id == "m-1"
        assert audit.action == "consent_override_applied"
        assert audit.actor_type == "teacher"
        assert audit.actor_id == "staff-1"
        assert audit.metadata["override_reason"] == "paper_consent_pending"
        assert audit.metadata["original_status"] is None
        assert "paper consent form submitted" in audit.summary

    @pytest.mark.asyncio
    async def test_teacher_cannot_override_fee_consent(self, audit_sink) -> None:
        service = ConsentOverrideService(audit_sink)

        with pytest.raises(OverrideNotPermittedError):
            await service.apply(
                _request(category=ConsentCategory.FEE_COMMUNICATIONS),
                ConsentStatus.PENDING,
                ConsentClarity.UNCLEAR,
            )

        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_teacher_cannot_cite_admin_reason(self, audit_sink) -> None:
        service = ConsentOverrideService(audit_sink)

        with pytest.raises(OverrideNotPermittedError, match="admin_discretion"):
            await service.apply(
                _request(reason=OverrideReason.ADMIN_DISCRETION),
                None,
                ConsentClarity.MISSING,
            )

    @pytest.mark.asyncio
    async def test_admin_overrides_fee_consent(self, audit_sink) -> None:
        service = ConsentOverrideService(audit_sink)

        entry = await service.apply(
            _request(
                category=ConsentCategory.FEE_COMMUNICATIONS,
                role=OverrideRole.ADMIN,
                reason=OverrideReason.TIME_SENSITIVE,
            ),
            ConsentStatus.PENDING,
            ConsentClarity.UNCLEAR,
        )

        assert entry.original_status == ConsentStatus.PENDING

    @pytest.mark.asyncio
    async def test_withdrawn_consent_cannot_be_overridden(self, audit_sink) -> None:
        service = ConsentOverrideService(audit_sink)

        with pytest.raises(WithdrawnConsentOverrideError):
            await service.apply(
                _request(role=OverrideRole.ADMIN, reason=OverrideReason.ADMIN_DISCRETION),
                ConsentStatus.WITHDRAWN,
                ConsentClarity.CLEAR,
            )

        assert audit_sink.entries == []


class TestEventBusAuditSink:
    """Tests for EventBusAuditSink."""

    @pytest.mark.asyncio
    async def test_append_publishes_audit_event(self) -> None:
        bus = EventBus()
        received: list[EventData] = []

        async def handler(event: EventData) -> None:
            received.append(event)

        bus.subscribe("audit.*", handler)
        sink = EventBusAuditSink(bus)

        audit_id = await sink.append(
            AuditEntry(
                entity_type="consent_override",
                entity_id="m-1",
                action="consent_override_applied",
                actor_type="admin",
                actor_id="admin-1",
                summary="override",
            )
        )

        assert len(received) == 1
        assert received[0].event_type == "audit.consent_override_applied"
        assert received[0].event_id == audit_id
        assert received[0].payload["audit_id"] == audit_id
        assert received[0].payload["entity_id"] == "m-1"
        assert received[0].source == "audit"
