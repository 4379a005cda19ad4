# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consent resolution for a single guardian.

This module provides the ConsentResolver, a pure decision function that
classifies the clarity of a stored consent record and maps it, through
the per-category fallback table, onto an action. When the action is not
allow, the resolution carries a follow-up task for staff.

Example:
    >>> resolver = ConsentResolver()
    >>> resolution = resolver.resolve(
    ...     ConsentCategory.ACADEMIC_UPDATES, None, utc_now(),
    ...     guardian_id="g-1", student_id="s-1",
    ... )
    >>> resolution.action
    <FallbackAction.BLOCK: 'block'>
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import uuid4

from guardian_notify.domains.consent.models import (
    CATEGORY_RULES,
    ConsentCategory,
    ConsentClarity,
    ConsentRecord,
    ConsentStatus,
    FallbackAction,
    FollowUpPriority,
    FollowUpTask,
    FollowUpType,
)
from guardian_notify.utils.datetime import add_days, is_expired

logger = logging.getLogger(__name__)


class OverrideRole(str, Enum):
    """Staff roles that may force a held message through."""

    TEACHER = "teacher"
    ADMIN = "admin"


FOLLOW_UP_TYPES: dict[ConsentClarity, FollowUpType] = {
    ConsentClarity.MISSING: FollowUpType.COLLECT_CONSENT,
    ConsentClarity.EXPIRED: FollowUpType.COLLECT_CONSENT,
    ConsentClarity.UNCLEAR: FollowUpType.VERIFY_CONSENT,
    ConsentClarity.CONFLICTING: FollowUpType.RESOLVE_CONFLICT,
}

FOLLOW_UP_DUE_DAYS: dict[FollowUpType, int] = {
    FollowUpType.RESOLVE_CONFLICT: 1,
    FollowUpType.VERIFY_CONSENT: 3,
    FollowUpType.COLLECT_CONSENT: 7,
}

FOLLOW_UP_PRIORITIES: dict[ConsentCategory, FollowUpPriority] = {
    ConsentCategory.FEE_COMMUNICATIONS: FollowUpPriority.HIGH,
    ConsentCategory.ATTENDANCE_NOTIFICATIONS: FollowUpPriority.HIGH,
    ConsentCategory.ACADEMIC_UPDATES: FollowUpPriority.MEDIUM,
    ConsentCategory.SCHOOL_ANNOUNCEMENTS: FollowUpPriority.MEDIUM,
}


@dataclass(frozen=True)
class ConsentResolution:
    """Outcome of resolving one guardian's consent for a category.

    Attributes:
        category: Category resolved.
        clarity: How clear the stored consent was.
        action: What to do with the message.
        reason: Human-readable explanation.
        status: Stored status, if a record existed.
        can_override: Whether staff may force the message through.
        override_role: Lowest role allowed to override, if any.
        follow_up: Staff task emitted for unclear consent, if any.
    """

    category: ConsentCategory
    clarity: ConsentClarity
    action: FallbackAction
    reason: str
    status: ConsentStatus | None = None
    can_override: bool = False
    override_role: OverrideRole | None = None
    follow_up: FollowUpTask | None = None

    @property
    def allowed(self) -> bool:
        """Whether the message may proceed."""
        return self.action == FallbackAction.ALLOW

    @property
    def is_withdrawn(self) -> bool:
        """Whether the guardian explicitly withdrew consent."""
        return self.clarity == ConsentClarity.CLEAR and self.status == ConsentStatus.WITHDRAWN


def assess_clarity(
    record: ConsentRecord | None,
    now: datetime,
    has_conflicting_records: bool = False,
) -> ConsentClarity:
    """Classify how clear a stored consent record is.

    Clarity is assessed in order: missing, conflicting, expired, unclear,
    clear. An explicit withdrawal is always clear, whatever its expiry.

    Args:
        record: Stored record, or None when nothing was recorded.
        now: Reference time for expiry.
        has_conflicting_records: Raw sources disagree for this tuple.

    Returns:
        The clarity classification.
    """
    if record is None:
        return ConsentClarity.MISSING
    if has_conflicting_records:
        return ConsentClarity.CONFLICTING
    if record.status == ConsentStatus.WITHDRAWN:
        return ConsentClarity.CLEAR
    if is_expired(record.expires_at, now):
        return ConsentClarity.EXPIRED
    if record.status in (ConsentStatus.PENDING, ConsentStatus.NOT_REQUESTED):
        return ConsentClarity.UNCLEAR
    return ConsentClarity.CLEAR


class ConsentResolver:
    """Pure resolver from stored consent state to a fallback action.

    The resolver holds no mutable state and is safe to call concurrently.
    """

    def resolve(
        self,
        category: ConsentCategory,
        record: ConsentRecord | None,
        now: datetime,
        *,
        has_conflicting_records: bool = False,
        is_emergency: bool = False,
        guardian_id: str | None = None,
        student_id: str | None = None,
    ) -> ConsentResolution:
        """Resolve whether a guardian may receive a message in a category.

        Args:
            category: Consent category of the message.
            record: Latest stored consent record, or None.
            now: Reference time.
            has_conflicting_records: Raw consent sources disagree.
            is_emergency: Message is explicitly flagged as an emergency.
            guardian_id: Guardian id used on follow-up tasks when no
                record exists.
            student_id: Student id used on follow-up tasks when no
                record exists.

        Returns:
            ConsentResolution with clarity, action and optional follow-up.
        """
        clarity = assess_clarity(record, now, has_conflicting_records)
        status = record.status if record is not None else None

        if is_emergency or category == ConsentCategory.EMERGENCY_ALERTS:
            return ConsentResolution(
                category=category,
                clarity=clarity,
                action=FallbackAction.ALLOW,
                reason="Emergency communications are always delivered",
                status=status,
            )

        if clarity == ConsentClarity.CLEAR:
            if status == ConsentStatus.GRANTED:
                return ConsentResolution(
                    category=category,
                    clarity=clarity,
                    action=FallbackAction.ALLOW,
                    reason="Consent granted",
                    status=status,
                )
            return ConsentResolution(
                category=category,
                clarity=clarity,
                action=FallbackAction.BLOCK,
                reason="Consent explicitly withdrawn",
                status=status,
            )

        fallback = CATEGORY_RULES[category].fallback
        action = fallback.action_for(clarity)

        override_role: OverrideRole | None = None
        if action != FallbackAction.ALLOW:
            if fallback.can_teacher_override:
                override_role = OverrideRole.TEACHER
            elif fallback.can_admin_override:
                override_role = OverrideRole.ADMIN

        follow_up = None
        if fallback.auto_flag_for_follow_up and action != FallbackAction.ALLOW:
            follow_up = self._create_follow_up(
                category,
                clarity,
                now,
                guardian_id=record.guardian_id if record is not None else guardian_id,
                student_id=record.student_id if record is not None else student_id,
            )

        resolution = ConsentResolution(
            category=category,
            clarity=clarity,
            action=action,
            reason=f"Consent {clarity.value} for {category.value}: {action.value}",
            status=status,
            can_override=override_role is not None,
            override_role=override_role,
            follow_up=follow_up,
        )
        logger.debug(
            "Consent fallback for %s/%s: clarity=%s action=%s",
            guardian_id or (record.guardian_id if record else None),
            category.value,
            clarity.value,
            action.value,
        )
        return resolution

    @staticmethod
    def _create_follow_up(
        category: ConsentCategory,
        clarity: ConsentClarity,
        now: datetime,
        *,
        guardian_id: str | None,
        student_id: str | None,
    ) -> FollowUpTask:
        task_type = FOLLOW_UP_TYPES[clarity]
        return FollowUpTask(
            id=str(uuid4()),
            guardian_id=guardian_id,
            student_id=student_id,
            category=category,
            task_type=task_type,
            priority=FOLLOW_UP_PRIORITIES.get(category, FollowUpPriority.LOW),
            created_at=now,
            due_by=add_days(now, FOLLOW_UP_DUE_DAYS[task_type]),
            notes=f"Consent for {CATEGORY_RULES[category].label} is {clarity.value}",
        )
