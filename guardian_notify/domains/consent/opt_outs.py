# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Opt-out evaluation.

This module provides functions for:
- Finding the opt-out that governs one message
- Validating new opt-out requests against category rules
- Summarizing a guardian's opt-outs across several children
"""

from dataclasses import dataclass, field
from datetime import datetime

from guardian_notify.domains.consent.exceptions import OptOutNotAllowedError
from guardian_notify.domains.consent.models import (
    ALL_AUTOMATED,
    CATEGORY_RULES,
    OPT_OUT_SCOPE_PRIORITY,
    ConsentCategory,
    OptOutRecord,
    OptOutScope,
)
from guardian_notify.utils.datetime import is_expired


@dataclass(frozen=True)
class EffectiveOptOut:
    """The opt-out that governs one message, if any.

    Attributes:
        is_opted_out: Whether any opt-out applies.
        scope: Scope of the winning opt-out.
        record: The winning opt-out record.
    """

    is_opted_out: bool
    scope: OptOutScope | None = None
    record: OptOutRecord | None = None

    @property
    def covers_all_automated(self) -> bool:
        """Whether the winning opt-out silences every automated category."""
        return self.record is not None and self.record.covers_all_automated


NOT_OPTED_OUT = EffectiveOptOut(is_opted_out=False)


def applies_to(
    record: OptOutRecord,
    guardian_id: str,
    student_id: str,
    category: ConsentCategory,
    now: datetime,
) -> bool:
    """Check whether an opt-out record applies to one message."""
    if record.guardian_id != guardian_id or not record.is_active:
        return False
    if is_expired(record.expires_at, now):
        return False
    if record.student_id is not None and record.student_id != student_id:
        return False
    return record.category == ALL_AUTOMATED or record.category == category


def effective_opt_out(
    guardian_id: str,
    student_id: str,
    category: ConsentCategory,
    records: list[OptOutRecord],
    now: datetime,
) -> EffectiveOptOut:
    """Find the highest-priority opt-out for a message.

    Priority: student_specific > category > all_automated > temporary.

    Args:
        guardian_id: Target guardian.
        student_id: Student the message concerns.
        category: Consent category of the message.
        records: Guardian's opt-out records.
        now: Reference time for expiry.

    Returns:
        EffectiveOptOut, NOT_OPTED_OUT when nothing applies.
    """
    relevant = [r for r in records if applies_to(r, guardian_id, student_id, category, now)]
    if not relevant:
        return NOT_OPTED_OUT

    winner = max(relevant, key=lambda r: OPT_OUT_SCOPE_PRIORITY[r.scope])
    return EffectiveOptOut(is_opted_out=True, scope=winner.scope, record=winner)


def validate_opt_out_request(category: ConsentCategory, reason: str | None = None) -> None:
    """Validate an opt-out request against the category rules.

    Args:
        category: Category to opt out of.
        reason: Stated reason.

    Raises:
        OptOutNotAllowedError: If the category cannot be opted out of, or
            a required reason is missing.
    """
    rules = CATEGORY_RULES[category]
    if not rules.allows_opt_out:
        raise OptOutNotAllowedError(f"Cannot opt out of {rules.label}")
    if rules.requires_opt_out_reason and not (reason and reason.strip()):
        raise OptOutNotAllowedError(f"A reason is required to opt out of {rules.label}")


@dataclass
class ChildOptOutStatus:
    """Opt-out status of one guardian for one child.

    Attributes:
        global_opt_out: All automated messages are silenced.
        category_opt_outs: Categories silenced for this child.
    """

    global_opt_out: bool = False
    category_opt_outs: list[ConsentCategory] = field(default_factory=list)


def multi_child_opt_out_status(
    guardian_id: str,
    records: list[OptOutRecord],
    children_ids: list[str],
) -> dict[str, ChildOptOutStatus]:
    """Summarize a guardian's opt-outs for each of their children.

    Guardian-wide records apply to every child. Child-specific records
    apply only to their child.

    Args:
        guardian_id: Guardian to summarize.
        records: Guardian's opt-out records.
        children_ids: Children linked to the guardian.

    Returns:
        Status per child id.
    """
    active = [r for r in records if r.guardian_id == guardian_id and r.is_active]
    guardian_wide = [r for r in active if r.student_id is None]
    wide_global = any(r.covers_all_automated for r in guardian_wide)

    result: dict[str, ChildOptOutStatus] = {}
    for child_id in children_ids:
        applicable = guardian_wide + [r for r in active if r.student_id == child_id]
        categories: list[ConsentCategory] = []
        for record in applicable:
            if not record.covers_all_automated and record.category not in categories:
                categories.append(ConsentCategory(record.category))
        result[child_id] = ChildOptOutStatus(
            global_opt_out=wide_global
            or any(r.covers_all_automated for r in applicable if r.student_id == child_id),
            category_opt_outs=categories,
        )
    return result
