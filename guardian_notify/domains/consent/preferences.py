# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian communication preferences.

Preferences are mutable, last-write-wins. Every change made through
update_preferences() also yields a history entry describing what changed
and who changed it. Emergency alerts can never be switched off.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from guardian_notify.domains.consent.exceptions import PreferenceInvariantError
from guardian_notify.domains.consent.models import ConsentCategory, RecorderRole
from guardian_notify.infrastructure.notifications.channels.base import ChannelAvailability, ChannelType
from guardian_notify.utils.datetime import utc_now


class PreferredChannel(str, Enum):
    """A guardian's chosen channel, or none for no contact."""

    WHATSAPP = "whatsapp"
    SMS = "sms"
    EMAIL = "email"
    NONE = "none"

    @property
    def channel(self) -> ChannelType | None:
        """The transport channel, None when the guardian chose none."""
        if self == PreferredChannel.NONE:
            return None
        return ChannelType(self.value)


# Silent fallback is only ever between the two phone channels
CHANNEL_FALLBACKS: dict[ChannelType, ChannelType] = {
    ChannelType.WHATSAPP: ChannelType.SMS,
    ChannelType.SMS: ChannelType.WHATSAPP,
}


class ParentPreferences(BaseModel):
    """Communication preferences of one guardian.

    Attributes:
        guardian_id: Guardian these preferences belong to.
        preferred_channel: Channel to use first.
        global_opt_out: Guardian opted out of all automated messages.
        opt_out_reason: Reason given for the global opt-out.
        receives_learning_updates: Academic updates enabled.
        receives_attendance_notices: Attendance notifications enabled.
        receives_fee_updates: Fee communications enabled (opt-in only).
        receives_announcements: Announcements and invitations enabled.
        receives_emergency: Always True.
        quiet_hours_start: Hour quiet hours begin, 0-23.
        quiet_hours_end: Hour quiet hours end, 0-23. May be lower than
            the start, meaning quiet hours wrap midnight.
        max_messages_per_week: Weekly cap on automated messages.
        updated_by: Who last changed the preferences.
        updated_at: When the preferences last changed.
    """

    model_config = ConfigDict(validate_assignment=True)

    guardian_id: str
    preferred_channel: PreferredChannel = PreferredChannel.WHATSAPP
    global_opt_out: bool = False
    opt_out_reason: str | None = None
    receives_learning_updates: bool = True
    receives_attendance_notices: bool = True
    receives_fee_updates: bool = False
    receives_announcements: bool = True
    receives_emergency: bool = True
    quiet_hours_start: int = Field(default=18, ge=0, le=23)
    quiet_hours_end: int = Field(default=8, ge=0, le=23)
    max_messages_per_week: int = Field(default=5, ge=0)
    updated_by: str | None = None
    updated_at: datetime | None = None

    @field_validator("receives_emergency")
    @classmethod
    def emergency_always_on(cls, value: bool) -> bool:
        """Reject any attempt to disable emergency alerts."""
        if not value:
            raise ValueError("Emergency alerts cannot be disabled")
        return value

    def receives_category(self, category: ConsentCategory) -> bool:
        """Check whether the guardian enabled a category.

        Args:
            category: Consent category of the message.

        Returns:
            True when the category is enabled.
        """
        if category == ConsentCategory.EMERGENCY_ALERTS:
            return True
        return {
            ConsentCategory.ACADEMIC_UPDATES: self.receives_learning_updates,
            ConsentCategory.ATTENDANCE_NOTIFICATIONS: self.receives_attendance_notices,
            ConsentCategory.FEE_COMMUNICATIONS: self.receives_fee_updates,
            ConsentCategory.SCHOOL_ANNOUNCEMENTS: self.receives_announcements,
            ConsentCategory.EVENT_INVITATIONS: self.receives_announcements,
        }[category]

    def is_quiet_hour(self, hour: int) -> bool:
        """Check whether an hour of day falls in quiet hours.

        The window is [start, end). When start is after end the window
        wraps midnight. Equal start and end means no quiet hours.

        Args:
            hour: Hour of day, 0-23.

        Returns:
            True during quiet hours.
        """
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start > end:
            return hour >= start or hour < end
        return start <= hour < end


def default_preferences(guardian_id: str, weekly_cap: int = 5) -> ParentPreferences:
    """Build the preferences a new guardian starts with."""
    return ParentPreferences(guardian_id=guardian_id, max_messages_per_week=weekly_cap)


def resolve_channel(
    preferred: PreferredChannel,
    available: ChannelAvailability,
) -> tuple[ChannelType | None, bool]:
    """Pick a channel from the guardian's preference.

    The preferred channel is used when available. Otherwise WhatsApp and
    SMS fall back to each other. Email is never a silent fallback.

    Args:
        preferred: Guardian's preferred channel.
        available: Channels that can currently reach the guardian.

    Returns:
        (channel, is_fallback). Channel is None when nothing suitable is
        available.
    """
    channel = preferred.channel
    if channel is None:
        return None, False
    if available.is_available(channel):
        return channel, False
    fallback = CHANNEL_FALLBACKS.get(channel)
    if fallback is not None and available.is_available(fallback):
        return fallback, True
    return None, False


class PreferenceChangeType(str, Enum):
    """Kind of preference change recorded in history."""

    CHANNEL_CHANGE = "channel_change"
    OPT_OUT = "opt_out"
    OPT_IN = "opt_in"
    CATEGORY_CHANGE = "category_change"


class PreferenceHistoryEntry(BaseModel):
    """One recorded change of preferences.

    Attributes:
        guardian_id: Guardian whose preferences changed.
        change_type: Kind of change.
        previous_value: Changed fields before the update.
        new_value: Changed fields after the update.
        changed_by: Who made the change.
        changed_by_role: Role of whoever made the change.
        reason: Stated reason.
        changed_at: When the change was made.
    """

    model_config = ConfigDict(frozen=True)

    guardian_id: str
    change_type: PreferenceChangeType
    previous_value: dict[str, Any]
    new_value: dict[str, Any]
    changed_by: str
    changed_by_role: RecorderRole
    reason: str | None = None
    changed_at: datetime


def _classify_change(changes: dict[str, Any]) -> PreferenceChangeType:
    if "global_opt_out" in changes:
        return PreferenceChangeType.OPT_OUT if changes["global_opt_out"] else PreferenceChangeType.OPT_IN
    if "preferred_channel" in changes:
        return PreferenceChangeType.CHANNEL_CHANGE
    return PreferenceChangeType.CATEGORY_CHANGE


def update_preferences(
    current: ParentPreferences,
    changes: dict[str, Any],
    changed_by: str,
    changed_by_role: RecorderRole,
    reason: str | None = None,
    now: datetime | None = None,
) -> tuple[ParentPreferences, PreferenceHistoryEntry | None]:
    """Apply a preference change and describe it for history.

    Args:
        current: Preferences before the change.
        changes: Field names and new values.
        changed_by: Who is making the change.
        changed_by_role: Role of whoever makes the change.
        reason: Stated reason.
        now: Change time, defaults to utc_now().

    Returns:
        (updated preferences, history entry). The entry is None when
        nothing actually changed.

    Raises:
        PreferenceInvariantError: If the change would disable emergency
            alerts.
        ValueError: If a field name is unknown.
    """
    if changes.get("receives_emergency") is False:
        raise PreferenceInvariantError("Emergency alerts cannot be disabled")

    unknown = set(changes) - set(ParentPreferences.model_fields)
    if unknown:
        raise ValueError(f"Unknown preference fields: {sorted(unknown)}")

    previous = current.model_dump(mode="json")
    effective = {
        key: value
        for key, value in changes.items()
        if key not in ("updated_by", "updated_at") and previous.get(key) != _json_value(value)
    }
    if not effective:
        return current, None

    now = now or utc_now()
    updated = ParentPreferences.model_validate(
        {**current.model_dump(), **effective, "updated_by": changed_by, "updated_at": now}
    )

    entry = PreferenceHistoryEntry(
        guardian_id=current.guardian_id,
        change_type=_classify_change(effective),
        previous_value={key: previous.get(key) for key in effective},
        new_value={key: _json_value(value) for key, value in effective.items()},
        changed_by=changed_by,
        changed_by_role=changed_by_role,
        reason=reason,
        changed_at=now,
    )
    return updated, entry


def _json_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value
