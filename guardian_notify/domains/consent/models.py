# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Data models for the consent domain.

This module defines Pydantic models, enums and static rule tables for:
- Consent categories and their per-category rules
- Consent records as captured by teachers, admins and guardians
- Opt-out records and their scopes
- The fallback rule table applied when consent is not clear

Consent records are immutable once written. A change of mind is a new
record, so every historical decision stays auditable.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ConsentCategory(str, Enum):
    """Categories a guardian can give or withhold consent for."""

    EMERGENCY_ALERTS = "emergency_alerts"
    ATTENDANCE_NOTIFICATIONS = "attendance_notifications"
    ACADEMIC_UPDATES = "academic_updates"
    FEE_COMMUNICATIONS = "fee_communications"
    SCHOOL_ANNOUNCEMENTS = "school_announcements"
    EVENT_INVITATIONS = "event_invitations"


class MessageCategory(str, Enum):
    """Message kinds produced by school workflows.

    Each maps onto exactly one consent category, see
    MESSAGE_TO_CONSENT_CATEGORY.
    """

    EMERGENCY_NOTICE = "emergency_notice"
    ATTENDANCE_NOTICE = "attendance_notice"
    LEARNING_UPDATE = "learning_update"
    FEE_STATUS = "fee_status"
    SCHOOL_ANNOUNCEMENT = "school_announcement"


MESSAGE_TO_CONSENT_CATEGORY: dict[MessageCategory, ConsentCategory] = {
    MessageCategory.EMERGENCY_NOTICE: ConsentCategory.EMERGENCY_ALERTS,
    MessageCategory.ATTENDANCE_NOTICE: ConsentCategory.ATTENDANCE_NOTIFICATIONS,
    MessageCategory.LEARNING_UPDATE: ConsentCategory.ACADEMIC_UPDATES,
    MessageCategory.FEE_STATUS: ConsentCategory.FEE_COMMUNICATIONS,
    MessageCategory.SCHOOL_ANNOUNCEMENT: ConsentCategory.SCHOOL_ANNOUNCEMENTS,
}


def to_consent_category(value: "ConsentCategory | MessageCategory | str") -> ConsentCategory:
    """Normalize a message or consent category to a consent category.

    Args:
        value: A ConsentCategory, a MessageCategory, or either's string value.

    Returns:
        The matching ConsentCategory.

    Raises:
        ValueError: If the value names neither kind of category.
    """
    if isinstance(value, ConsentCategory):
        return value
    if isinstance(value, MessageCategory):
        return MESSAGE_TO_CONSENT_CATEGORY[value]
    try:
        return ConsentCategory(value)
    except ValueError:
        return MESSAGE_TO_CONSENT_CATEGORY[MessageCategory(value)]


class ConsentStatus(str, Enum):
    """Stored consent status."""

    GRANTED = "granted"
    WITHDRAWN = "withdrawn"
    PENDING = "pending"
    NOT_REQUESTED = "not_requested"


class ConsentSource(str, Enum):
    """How a consent decision was captured."""

    PAPER_FORM = "paper_form"
    VERBAL_TEACHER = "verbal_teacher"
    VERBAL_ADMIN = "verbal_admin"
    PHONE_CALL = "phone_call"
    SMS_REPLY = "sms_reply"
    WHATSAPP_REPLY = "whatsapp_reply"
    APP_TOGGLE = "app_toggle"
    ENROLLMENT_DEFAULT = "enrollment_default"
    SYSTEM_MIGRATION = "system_migration"

    @property
    def is_verbal(self) -> bool:
        """Whether this source is a verbal statement to staff."""
        return self in (ConsentSource.VERBAL_TEACHER, ConsentSource.VERBAL_ADMIN)


class RecorderRole(str, Enum):
    """Role of whoever recorded a consent decision or preference change."""

    PARENT = "parent"
    TEACHER = "teacher"
    ADMIN = "admin"
    SYSTEM = "system"


class ConsentClarity(str, Enum):
    """How clear the stored consent for a category is."""

    CLEAR = "clear"
    UNCLEAR = "unclear"
    MISSING = "missing"
    EXPIRED = "expired"
    CONFLICTING = "conflicting"


class FallbackAction(str, Enum):
    """Action taken when consent is evaluated."""

    ALLOW = "allow"
    BLOCK = "block"
    FLAG_FOR_REVIEW = "flag_for_review"
    REQUIRE_OVERRIDE = "require_override"


class ConflictStrategy(str, Enum):
    """How disagreeing guardians of one student are reconciled."""

    ANY_GUARDIAN_ALLOWS = "any_guardian_allows"
    ALL_GUARDIANS_ALLOW = "all_guardians_allow"
    PRIMARY_GUARDIAN_DECIDES = "primary_guardian_decides"
    MOST_RESTRICTIVE = "most_restrictive"
    MOST_PERMISSIVE = "most_permissive"


@dataclass(frozen=True)
class FallbackRule:
    """Actions taken for a category when its consent is not clear.

    Attributes:
        missing: Action when no record exists.
        unclear: Action when the record is pending or not requested.
        expired: Action when a grant has lapsed.
        conflicting: Action when raw sources disagree.
        can_teacher_override: A teacher may force a held message through.
        can_admin_override: An admin may force a held message through.
        auto_flag_for_follow_up: Emit a follow-up task when not allowed.
    """

    missing: FallbackAction
    unclear: FallbackAction
    expired: FallbackAction
    conflicting: FallbackAction
    can_teacher_override: bool
    can_admin_override: bool
    auto_flag_for_follow_up: bool

    def action_for(self, clarity: ConsentClarity) -> FallbackAction:
        """Get the action for a non-clear clarity."""
        return {
            ConsentClarity.MISSING: self.missing,
            ConsentClarity.UNCLEAR: self.unclear,
            ConsentClarity.EXPIRED: self.expired,
            ConsentClarity.CONFLICTING: self.conflicting,
        }[clarity]


@dataclass(frozen=True)
class CategoryRules:
    """Static per-category consent rules.

    Attributes:
        category: Category these rules apply to.
        label: Human-readable category name.
        is_mandatory: Category cannot be opted out of.
        default_status: Status assumed at enrollment.
        requires_explicit_consent: A recorded grant is required to send.
        allows_verbal_consent: Verbal consent to staff is acceptable.
        allows_opt_out: Guardians may opt out of the category.
        requires_opt_out_reason: Opting out must state a reason.
        conflict_strategy: Multi-guardian reconciliation strategy.
        fallback: Actions when consent is not clear.
        expiry_months: Months after which a grant lapses, if any.
    """

    category: ConsentCategory
    label: str
    is_mandatory: bool
    default_status: ConsentStatus
    requires_explicit_consent: bool
    allows_verbal_consent: bool
    allows_opt_out: bool
    requires_opt_out_reason: bool
    conflict_strategy: ConflictStrategy
    fallback: FallbackRule
    expiry_months: int | None = None


_ALLOW = FallbackAction.ALLOW
_BLOCK = FallbackAction.BLOCK
_FLAG = FallbackAction.FLAG_FOR_REVIEW
_OVERRIDE = FallbackAction.REQUIRE_OVERRIDE

CATEGORY_RULES: dict[ConsentCategory, CategoryRules] = {
    ConsentCategory.EMERGENCY_ALERTS: CategoryRules(
        category=ConsentCategory.EMERGENCY_ALERTS,
        label="Emergency alerts",
        is_mandatory=True,
        default_status=ConsentStatus.GRANTED,
        requires_explicit_consent=False,
        allows_verbal_consent=False,
        allows_opt_out=False,
        requires_opt_out_reason=False,
        conflict_strategy=ConflictStrategy.ANY_GUARDIAN_ALLOWS,
        fallback=FallbackRule(
            missing=_ALLOW,
            unclear=_ALLOW,
            expired=_ALLOW,
            conflicting=_ALLOW,
            can_teacher_override=False,
            can_admin_override=False,
            auto_flag_for_follow_up=False,
        ),
    ),
    ConsentCategory.ATTENDANCE_NOTIFICATIONS: CategoryRules(
        category=ConsentCategory.ATTENDANCE_NOTIFICATIONS,
        label="Attendance notifications",
        is_mandatory=False,
        default_status=ConsentStatus.PENDING,
        requires_explicit_consent=True,
        allows_verbal_consent=True,
        allows_opt_out=True,
        requires_opt_out_reason=False,
        conflict_strategy=ConflictStrategy.ANY_GUARDIAN_ALLOWS,
        fallback=FallbackRule(
            missing=_BLOCK,
            unclear=_FLAG,
            expired=_FLAG,
            conflicting=_OVERRIDE,
            can_teacher_override=True,
            can_admin_override=True,
            auto_flag_for_follow_up=True,
        ),
    ),
    ConsentCategory.ACADEMIC_UPDATES: CategoryRules(
        category=ConsentCategory.ACADEMIC_UPDATES,
        label="Academic updates",
        is_mandatory=False,
        default_status=ConsentStatus.PENDING,
        requires_explicit_consent=True,
        allows_verbal_consent=True,
        allows_opt_out=True,
        requires_opt_out_reason=False,
        conflict_strategy=ConflictStrategy.ANY_GUARDIAN_ALLOWS,
        fallback=FallbackRule(
            missing=_BLOCK,
            unclear=_FLAG,
            expired=_FLAG,
            conflicting=_OVERRIDE,
            can_teacher_override=True,
            can_admin_override=True,
            auto_flag_for_follow_up=True,
        ),
    ),
    ConsentCategory.FEE_COMMUNICATIONS: CategoryRules(
        category=ConsentCategory.FEE_COMMUNICATIONS,
        label="Fee communications",
        is_mandatory=False,
        default_status=ConsentStatus.PENDING,
        requires_explicit_consent=True,
        allows_verbal_consent=False,
        allows_opt_out=True,
        requires_opt_out_reason=True,
        conflict_strategy=ConflictStrategy.PRIMARY_GUARDIAN_DECIDES,
        fallback=FallbackRule(
            missing=_BLOCK,
            unclear=_OVERRIDE,
            expired=_OVERRIDE,
            conflicting=_OVERRIDE,
            can_teacher_override=False,
            can_admin_override=True,
            auto_flag_for_follow_up=True,
        ),
        expiry_months=12,
    ),
    ConsentCategory.SCHOOL_ANNOUNCEMENTS: CategoryRules(
        category=ConsentCategory.SCHOOL_ANNOUNCEMENTS,
        label="School announcements",
        is_mandatory=False,
        default_status=ConsentStatus.PENDING,
        requires_explicit_consent=True,
        allows_verbal_consent=True,
        allows_opt_out=True,
        requires_opt_out_reason=False,
        conflict_strategy=ConflictStrategy.ANY_GUARDIAN_ALLOWS,
        fallback=FallbackRule(
            missing=_BLOCK,
            unclear=_FLAG,
            expired=_FLAG,
            conflicting=_FLAG,
            can_teacher_override=True,
            can_admin_override=True,
            auto_flag_for_follow_up=True,
        ),
    ),
    ConsentCategory.EVENT_INVITATIONS: CategoryRules(
        category=ConsentCategory.EVENT_INVITATIONS,
        label="Event invitations",
        is_mandatory=False,
        default_status=ConsentStatus.PENDING,
        requires_explicit_consent=False,
        allows_verbal_consent=True,
        allows_opt_out=True,
        requires_opt_out_reason=False,
        conflict_strategy=ConflictStrategy.ANY_GUARDIAN_ALLOWS,
        fallback=FallbackRule(
            missing=_BLOCK,
            unclear=_FLAG,
            expired=_ALLOW,
            conflicting=_FLAG,
            can_teacher_override=True,
            can_admin_override=True,
            auto_flag_for_follow_up=False,
        ),
    ),
}


class ConsentRecord(BaseModel):
    """One immutable consent decision for a (guardian, student, category).

    Attributes:
        id: Record identifier.
        guardian_id: Guardian the decision belongs to.
        student_id: Student the decision concerns.
        category: Consent category.
        status: Decision recorded.
        source: How the decision was captured.
        granted_at: When consent was granted, if granted.
        withdrawn_at: When consent was withdrawn, if withdrawn.
        expires_at: When a grant lapses, if it does.
        recorded_by: User id of whoever recorded the decision.
        recorded_by_role: Role of whoever recorded the decision.
        witness_name: Witness for verbal consent.
        paper_form_ref: Reference of the signed paper form.
        notes: Free-text notes.
        last_reviewed_at: Last time staff reviewed the record.
        created_at: When the record was written.
        synced_at: When an offline-recorded record reached the server.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    guardian_id: str
    student_id: str
    category: ConsentCategory
    status: ConsentStatus
    source: ConsentSource
    granted_at: datetime | None = None
    withdrawn_at: datetime | None = None
    expires_at: datetime | None = None
    recorded_by: str | None = None
    recorded_by_role: RecorderRole = RecorderRole.SYSTEM
    witness_name: str | None = None
    paper_form_ref: str | None = None
    notes: str | None = None
    last_reviewed_at: datetime | None = None
    created_at: datetime | None = None
    synced_at: datetime | None = None


ALL_AUTOMATED = "all_automated"


class OptOutScope(str, Enum):
    """Scope of an opt-out.

    Higher priority scopes win when several records apply, see
    OPT_OUT_SCOPE_PRIORITY.
    """

    STUDENT_SPECIFIC = "student_specific"
    CATEGORY = "category"
    ALL_AUTOMATED = "all_automated"
    TEMPORARY = "temporary"


OPT_OUT_SCOPE_PRIORITY: dict[OptOutScope, int] = {
    OptOutScope.STUDENT_SPECIFIC: 4,
    OptOutScope.CATEGORY: 3,
    OptOutScope.ALL_AUTOMATED: 2,
    OptOutScope.TEMPORARY: 1,
}


class OptOutRecord(BaseModel):
    """A guardian's opt-out from automated messages.

    Attributes:
        id: Record identifier.
        guardian_id: Guardian who opted out.
        student_id: Student the opt-out is limited to, or None for all.
        category: Category opted out of, or "all_automated".
        scope: Opt-out scope.
        is_active: False once revoked.
        reason: Stated reason, required for some categories.
        created_at: When the opt-out was recorded.
        expires_at: When a temporary opt-out ends.
        recorded_by: User id of whoever recorded it.
        recorded_by_role: Role of whoever recorded it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    guardian_id: str
    student_id: str | None = None
    category: ConsentCategory | Literal["all_automated"]
    scope: OptOutScope
    is_active: bool = True
    reason: str | None = None
    created_at: datetime
    expires_at: datetime | None = None
    recorded_by: str | None = None
    recorded_by_role: RecorderRole = RecorderRole.PARENT

    @property
    def covers_all_automated(self) -> bool:
        """Whether this opt-out silences every automated category."""
        return self.category == ALL_AUTOMATED


class FollowUpType(str, Enum):
    """Kind of staff follow-up needed for unclear consent."""

    COLLECT_CONSENT = "collect_consent"
    VERIFY_CONSENT = "verify_consent"
    RESOLVE_CONFLICT = "resolve_conflict"


class FollowUpPriority(str, Enum):
    """Follow-up urgency."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FollowUpTask(BaseModel):
    """Staff task emitted when consent blocks or holds a message.

    Attributes:
        id: Task identifier.
        guardian_id: Guardian to follow up with.
        student_id: Student concerned.
        category: Consent category concerned.
        task_type: What staff should do.
        priority: Task urgency.
        created_at: When the task was emitted.
        due_by: When the task should be done.
        notes: Human-readable context.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    guardian_id: str | None
    student_id: str | None
    category: ConsentCategory
    task_type: FollowUpType
    priority: FollowUpPriority
    created_at: datetime
    due_by: datetime
    notes: str = Field(default="")
