# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for consent resolution.

Tests cover:
- Clarity assessment order
- Clear grants and withdrawals
- Per-category fallback actions
- Override roles and follow-up tasks
- Emergency bypass
"""

from datetime import datetime, timedelta, timezone

import pytest

from guardian_notify.domains.consent.models import (
    CATEGORY_RULES,
    ConsentCategory,
    ConsentClarity,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
    FallbackAction,
    FollowUpPriority,
    FollowUpType,
    MessageCategory,
    to_consent_category,
)
from guardian_notify.domains.consent.resolver import (
    ConsentResolver,
    OverrideRole,
    assess_clarity,
)

NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


def _record(
    status: ConsentStatus,
    category: ConsentCategory = ConsentCategory.ACADEMIC_UPDATES,
    expires_at: datetime | None = None,
) -> ConsentRecord:
    return ConsentRecord(
        id="c-1",
        guardian_id="g-1",
        student_id="s-1",
        category=category,
        status=status,
        source=ConsentSource.PAPER_FORM,
        expires_at=expires_at,
        created_at=NOW - timedelta(days=10),
    )


@pytest.fixture
def resolver() -> ConsentResolver:
    return ConsentResolver()


class TestAssessClarity:
    """Tests for assess_clarity."""

    def test_missing_record(self) -> None:
        assert assess_clarity(None, NOW) == ConsentClarity.MISSING

    def test_missing_wins_over_conflict(self) -> None:
        assert assess_clarity(None, NOW, has_conflicting_records=True) == ConsentClarity.MISSING

    def test_conflicting_records(self) -> None:
        record = _record(ConsentStatus.GRANTED)
        assert assess_clarity(record, NOW, has_conflicting_records=True) == ConsentClarity.CONFLICTING

    def test_expired_grant(self) -> None:
        record = _record(ConsentStatus.GRANTED, expires_at=NOW - timedelta(days=1))
        assert assess_clarity(record, NOW) == ConsentClarity.EXPIRED

    def test_expired_withdrawal_is_still_clear(self) -> None:
        """A withdrawal never lapses into an unclear state."""
        record = _record(ConsentStatus.WITHDRAWN, expires_at=NOW - timedelta(days=1))
        assert assess_clarity(record, NOW) == ConsentClarity.CLEAR

    @pytest.mark.parametrize("status", [ConsentStatus.PENDING, ConsentStatus.NOT_REQUESTED])
    def test_pending_is_unclear(self, status: ConsentStatus) -> None:
        assert assess_clarity(_record(status), NOW) == ConsentClarity.UNCLEAR

    def test_granted_is_clear(self) -> None:
        record = _record(ConsentStatus.GRANTED, expires_at=NOW + timedelta(days=30))
        assert assess_clarity(record, NOW) == ConsentClarity.CLEAR


class TestConsentResolver:
    """Tests for ConsentResolver.resolve."""

    def test_granted_allows(self, resolver: ConsentResolver) -> None:
        resolution = resolver.resolve(
            ConsentCategory.ACADEMIC_UPDATES, _record(ConsentStatus.GRANTED), NOW
        )

        assert resolution.allowed
        assert resolution.clarity == ConsentClarity.CLEAR
        assert resolution.follow_up is None

    def test_withdrawn_blocks_without_override(self, resolver: ConsentResolver) -> None:
        resolution = resolver.resolve(
            ConsentCategory.ACADEMIC_UPDATES, _record(ConsentStatus.WITHDRAWN), NOW
        )

        assert resolution.action == FallbackAction.BLOCK
        assert resolution.is_withdrawn
        assert not resolution.can_override
        assert resolution.follow_up is None

    def test_missing_academic_consent_blocks_with_follow_up(
        self, resolver: ConsentResolver
    ) -> None:
        resolution = resolver.resolve(
            ConsentCategory.ACADEMIC_UPDATES,
            None,
            NOW,
            guardian_id="g-9",
            student_id="s-9",
        )

        assert resolution.action == FallbackAction.BLOCK
        assert resolution.override_role == OverrideRole.TEACHER
        assert resolution.follow_up is not None
        assert resolution.follow_up.guardian_id == "g-9"
        assert resolution.follow_up.student_id == "s-9"
        assert resolution.follow_up.task_type == FollowUpType.COLLECT_CONSENT
        assert resolution.follow_up.priority == FollowUpPriority.MEDIUM
        assert resolution.follow_up.due_by == NOW + timedelta(days=7)

    def test_unclear_attendance_flags_for_review(self, resolver: ConsentResolver) -> None:
        record = _record(ConsentStatus.PENDING, ConsentCategory.ATTENDANCE_NOTIFICATIONS)

        resolution = resolver.resolve(ConsentCategory.ATTENDANCE_NOTIFICATIONS, record, NOW)

        assert resolution.action == FallbackAction.FLAG_FOR_REVIEW
        assert resolution.follow_up is not None
        assert resolution.follow_up.task_type == FollowUpType.VERIFY_CONSENT
        assert resolution.follow_up.priority == FollowUpPriority.HIGH
        assert resolution.follow_up.guardian_id == "g-1"

    def test_unclear_fee_consent_needs_admin_override(self, resolver: ConsentResolver) -> None:
        record = _record(ConsentStatus.PENDING, ConsentCategory.FEE_COMMUNICATIONS)

        resolution = resolver.resolve(ConsentCategory.FEE_COMMUNICATIONS, record, NOW)

        assert resolution.action == FallbackAction.REQUIRE_OVERRIDE
        assert resolution.override_role == OverrideRole.ADMIN
        assert resolution.can_override

    def test_conflicting_records_follow_up_due_next_day(self, resolver: ConsentResolver) -> None:
        resolution = resolver.resolve(
            ConsentCategory.ACADEMIC_UPDATES,
            _record(ConsentStatus.GRANTED),
            NOW,
            has_conflicting_records=True,
        )

        assert resolution.action == FallbackAction.REQUIRE_OVERRIDE
        assert resolution.follow_up is not None
        assert resolution.follow_up.task_type == FollowUpType.RESOLVE_CONFLICT
        assert resolution.follow_up.due_by == NOW + timedelta(days=1)

    def test_expired_event_invitation_allowed(self, resolver: ConsentResolver) -> None:
        record = _record(
            ConsentStatus.GRANTED,
            ConsentCategory.EVENT_INVITATIONS,
            expires_at=NOW - timedelta(days=1),
        )

        resolution = resolver.resolve(ConsentCategory.EVENT_INVITATIONS, record, NOW)

        assert resolution.clarity == ConsentClarity.EXPIRED
        assert resolution.allowed
        assert resolution.override_role is None

    def test_missing_event_invitation_blocked_without_follow_up(
        self, resolver: ConsentResolver
    ) -> None:
        resolution = resolver.resolve(ConsentCategory.EVENT_INVITATIONS, None, NOW)

        assert resolution.action == FallbackAction.BLOCK
        assert resolution.follow_up is None

    def test_emergency_category_always_allowed(self, resolver: ConsentResolver) -> None:
        resolution = resolver.resolve(
            ConsentCategory.EMERGENCY_ALERTS, _record(ConsentStatus.WITHDRAWN), NOW
        )

        assert resolution.allowed

    def test_emergency_flag_allows_any_category(self, resolver: ConsentResolver) -> None:
        resolution = resolver.resolve(
            ConsentCategory.FEE_COMMUNICATIONS, None, NOW, is_emergency=True
        )

        assert resolution.allowed
        assert resolution.clarity == ConsentClarity.MISSING

    @pytest.mark.parametrize("category", list(ConsentCategory))
    def test_fallback_actions_match_category_rules(
        self, resolver: ConsentResolver, category: ConsentCategory
    ) -> None:
        resolution = resolver.resolve(category, None, NOW)

        if category == ConsentCategory.EMERGENCY_ALERTS:
            assert resolution.allowed
        else:
            assert resolution.action == CATEGORY_RULES[category].fallback.missing


class TestCategoryMapping:
    """Tests for message to consent category mapping."""

    def test_message_category_maps_to_consent_category(self) -> None:
        assert to_consent_category(MessageCategory.LEARNING_UPDATE) == ConsentCategory.ACADEMIC_UPDATES
        assert to_consent_category("fee_status") == ConsentCategory.FEE_COMMUNICATIONS
        assert to_consent_category("event_invitations") == ConsentCategory.EVENT_INVITATIONS

    def test_unknown_category_raises(self) -> None:
        with pytest.raises(ValueError):
            to_consent_category("birthday_wishes")
