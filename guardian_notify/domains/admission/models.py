# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Data models for admission control.

An admission decision is always a value, never an exception: a blocked
message carries a typed reason so callers can show why it was held.
"""

from dataclasses import dataclass, field
from enum import Enum

from guardian_notify.domains.consent.conflict import ConflictOutcome
from guardian_notify.domains.consent.models import ConsentRecord, FollowUpTask, OptOutRecord
from guardian_notify.domains.consent.preferences import ParentPreferences
from guardian_notify.domains.consent.resolver import ConsentResolution
from guardian_notify.infrastructure.notifications.channels.base import ChannelType


class AdmissionReason(str, Enum):
    """Why a message was admitted or blocked."""

    # Admitted
    EMERGENCY_OVERRIDE = "emergency_override"
    MANUAL_BYPASS = "manual_bypass"
    ALLOWED = "allowed"
    OVERRIDE_APPLIED = "override_applied"

    # Blocked
    GLOBAL_OPT_OUT = "global_opt_out"
    NO_CHANNEL_PREFERRED = "no_channel_preferred"
    CATEGORY_OPT_OUT = "category_opt_out"
    CONSENT_WITHDRAWN = "consent_withdrawn"
    CONSENT_NOT_GRANTED = "consent_not_granted"
    GUARDIAN_CONFLICT = "guardian_conflict"
    QUIET_HOURS = "quiet_hours"
    WEEKLY_LIMIT_EXCEEDED = "weekly_limit_exceeded"
    PREFERRED_CHANNEL_UNAVAILABLE = "preferred_channel_unavailable"
    NO_CHANNEL_AVAILABLE = "no_channel_available"
    CONTACT_NOT_FOUND = "contact_not_found"
    NOT_A_RECIPIENT = "not_a_recipient"


@dataclass(frozen=True)
class GuardianContext:
    """Everything admission needs to know about one guardian.

    Attributes:
        guardian_id: Guardian identifier.
        student_id: Student the message concerns.
        preferences: Guardian's communication preferences.
        consent: Latest consent record for the message category.
        is_primary: Guardian holds a primary link to the student.
        guardian_name: Display name.
        has_conflicting_consent: Raw consent sources disagree.
        opt_outs: Guardian's opt-out records.
        weekly_sent_count: Automated messages sent this week.
    """

    guardian_id: str
    student_id: str
    preferences: ParentPreferences
    consent: ConsentRecord | None = None
    is_primary: bool = False
    guardian_name: str | None = None
    has_conflicting_consent: bool = False
    opt_outs: tuple[OptOutRecord, ...] = ()
    weekly_sent_count: int = 0


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of admission for one guardian.

    Attributes:
        guardian_id: Target guardian.
        allowed: Whether the message may be sent.
        reason: Why it was admitted or blocked.
        rule: Name of the rule that decided.
        channel: Channel to send on, when allowed.
        preferred_channel: Channel the guardian prefers.
        is_fallback: A non-preferred channel was chosen.
        emergency_override: Admitted through the emergency bypass.
        is_automated: Counts as an automated send.
        consent: Consent resolution for the target guardian.
        conflict: Multi-guardian reconciliation outcome.
    """

    guardian_id: str
    allowed: bool
    reason: AdmissionReason
    rule: str
    channel: ChannelType | None = None
    preferred_channel: ChannelType | None = None
    is_fallback: bool = False
    emergency_override: bool = False
    is_automated: bool = True
    consent: ConsentResolution | None = None
    conflict: ConflictOutcome | None = field(default=None, compare=False)

    @property
    def fallback_channel(self) -> ChannelType | None:
        """The substituted channel, when a fallback was used."""
        return self.channel if self.is_fallback else None

    @property
    def follow_up(self) -> FollowUpTask | None:
        """Staff follow-up raised while resolving consent."""
        return self.consent.follow_up if self.consent is not None else None

    @property
    def counts_toward_weekly_cap(self) -> bool:
        """Whether sending reserves a slot in the weekly cap."""
        return self.allowed and self.is_automated and not self.emergency_override
