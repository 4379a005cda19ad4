# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for guardian communication preferences.

Tests cover:
- Defaults and category switches
- Quiet hours, including windows that wrap midnight
- Channel resolution and WhatsApp/SMS fallback
- Preference updates and their history entries
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from guardian_notify.domains.consent.exceptions import PreferenceInvariantError
from guardian_notify.domains.consent.models import ConsentCategory, RecorderRole
from guardian_notify.domains.consent.preferences import (
    ParentPreferences,
    PreferenceChangeType,
    PreferredChannel,
    default_preferences,
    resolve_channel,
    update_preferences,
)
from guardian_notify.infrastructure.notifications.channels.base import (
    ChannelAvailability,
    ChannelType,
)

NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)


class TestDefaults:
    """Tests for default preferences."""

    def test_defaults(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        assert prefs.preferred_channel == PreferredChannel.WHATSAPP
        assert prefs.quiet_hours_start == 18
        assert prefs.quiet_hours_end == 8
        assert prefs.max_messages_per_week == 5
        assert not prefs.global_opt_out

    def test_fee_updates_are_opt_in(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        assert not prefs.receives_category(ConsentCategory.FEE_COMMUNICATIONS)
        assert prefs.receives_category(ConsentCategory.ACADEMIC_UPDATES)

    def test_event_invitations_follow_announcements(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1", receives_announcements=False)

        assert not prefs.receives_category(ConsentCategory.EVENT_INVITATIONS)
        assert not prefs.receives_category(ConsentCategory.SCHOOL_ANNOUNCEMENTS)

    def test_emergency_cannot_be_disabled(self) -> None:
        with pytest.raises(ValidationError):
            ParentPreferences(guardian_id="g-1", receives_emergency=False)

    def test_default_preferences_weekly_cap(self) -> None:
        assert default_preferences("g-1", weekly_cap=3).max_messages_per_week == 3


class TestQuietHours:
    """Tests for ParentPreferences.is_quiet_hour."""

    @pytest.mark.parametrize("hour,quiet", [(17, False), (18, True), (23, True), (0, True), (7, True), (8, False), (12, False)])
    def test_window_wrapping_midnight(self, hour: int, quiet: bool) -> None:
        prefs = ParentPreferences(guardian_id="g-1")
        assert prefs.is_quiet_hour(hour) is quiet

    def test_window_within_one_day(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1", quiet_hours_start=12, quiet_hours_end=14)

        assert prefs.is_quiet_hour(13)
        assert not prefs.is_quiet_hour(14)
        assert not prefs.is_quiet_hour(11)

    def test_equal_start_and_end_means_no_quiet_hours(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1", quiet_hours_start=9, quiet_hours_end=9)

        assert not any(prefs.is_quiet_hour(hour) for hour in range(24))

    def test_hour_bounds_validated(self) -> None:
        with pytest.raises(ValidationError):
            ParentPreferences(guardian_id="g-1", quiet_hours_start=24)


class TestResolveChannel:
    """Tests for resolve_channel."""

    def test_preferred_channel_used(self) -> None:
        available = ChannelAvailability(whatsapp=True, sms=True)

        assert resolve_channel(PreferredChannel.WHATSAPP, available) == (ChannelType.WHATSAPP, False)

    def test_whatsapp_falls_back_to_sms(self) -> None:
        available = ChannelAvailability(sms=True, email=True)

        assert resolve_channel(PreferredChannel.WHATSAPP, available) == (ChannelType.SMS, True)

    def test_sms_falls_back_to_whatsapp(self) -> None:
        available = ChannelAvailability(whatsapp=True)

        assert resolve_channel(PreferredChannel.SMS, available) == (ChannelType.WHATSAPP, True)

    def test_email_is_never_a_silent_fallback(self) -> None:
        available = ChannelAvailability(email=True)

        assert resolve_channel(PreferredChannel.WHATSAPP, available) == (None, False)

    def test_email_preference_does_not_fall_back(self) -> None:
        available = ChannelAvailability(whatsapp=True, sms=True)

        assert resolve_channel(PreferredChannel.EMAIL, available) == (None, False)

    def test_no_preferred_channel(self) -> None:
        available = ChannelAvailability(whatsapp=True, sms=True, email=True)

        assert resolve_channel(PreferredChannel.NONE, available) == (None, False)


class TestUpdatePreferences:
    """Tests for update_preferences."""

    def test_channel_change_recorded(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        updated, entry = update_preferences(
            prefs,
            {"preferred_channel": PreferredChannel.SMS},
            changed_by="teacher-1",
            changed_by_role=RecorderRole.TEACHER,
            reason="No smartphone",
            now=NOW,
        )

        assert updated.preferred_channel == PreferredChannel.SMS
        assert updated.updated_by == "teacher-1"
        assert entry is not None
        assert entry.change_type == PreferenceChangeType.CHANNEL_CHANGE
        assert entry.previous_value == {"preferred_channel": "whatsapp"}
        assert entry.new_value == {"preferred_channel": "sms"}
        assert entry.changed_at == NOW

    def test_global_opt_out_classified(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        _, entry = update_preferences(
            prefs, {"global_opt_out": True}, "g-1", RecorderRole.PARENT, now=NOW
        )

        assert entry is not None
        assert entry.change_type == PreferenceChangeType.OPT_OUT

    def test_no_effective_change(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        updated, entry = update_preferences(
            prefs, {"max_messages_per_week": 5}, "g-1", RecorderRole.PARENT, now=NOW
        )

        assert updated is prefs
        assert entry is None

    def test_disabling_emergency_rejected(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        with pytest.raises(PreferenceInvariantError):
            update_preferences(prefs, {"receives_emergency": False}, "g-1", RecorderRole.PARENT)

    def test_unknown_field_rejected(self) -> None:
        prefs = ParentPreferences(guardian_id="g-1")

        with pytest.raises(ValueError, match="Unknown preference fields"):
            update_preferences(prefs, {"favourite_colour": "blue"}, "g-1", RecorderRole.PARENT)
