# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consent record capture and summaries.

Teachers often record consent on a device without connectivity. Records
created here carry an "offline-" id and no synced_at until the local
store reports them synced.
"""

from datetime import datetime, timezone
from uuid import uuid4

from guardian_notify.domains.consent.exceptions import InvalidConsentSourceError
from guardian_notify.domains.consent.models import (
    CATEGORY_RULES,
    ConsentCategory,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.utils.datetime import add_days, ensure_utc, is_expired, utc_now

DAYS_PER_MONTH = 30


def validate_consent_source(category: ConsentCategory, source: ConsentSource) -> None:
    """Check that a capture source is acceptable for a category.

    Args:
        category: Consent category.
        source: How consent was captured.

    Raises:
        InvalidConsentSourceError: If verbal consent is not accepted for
            the category, or fee consent was not given on paper.
    """
    rules = CATEGORY_RULES[category]
    if source.is_verbal and not rules.allows_verbal_consent:
        raise InvalidConsentSourceError(
            f"{rules.label} requires written consent, verbal not accepted"
        )
    if category == ConsentCategory.FEE_COMMUNICATIONS and source != ConsentSource.PAPER_FORM:
        raise InvalidConsentSourceError(f"{rules.label} requires a signed paper form")


def create_offline_consent_record(
    guardian_id: str,
    student_id: str,
    category: ConsentCategory,
    status: ConsentStatus,
    source: ConsentSource,
    recorded_by: str,
    recorded_by_role: RecorderRole,
    *,
    witness_name: str | None = None,
    paper_form_ref: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> ConsentRecord:
    """Create a consent record captured on a device.

    Args:
        guardian_id: Guardian giving or withdrawing consent.
        student_id: Student concerned.
        category: Consent category.
        status: Decision recorded.
        source: How the decision was captured.
        recorded_by: User id of the recorder.
        recorded_by_role: Role of the recorder.
        witness_name: Witness for verbal consent.
        paper_form_ref: Paper form reference.
        notes: Free-text notes.
        now: Capture time, defaults to utc_now().

    Returns:
        A new unsynced ConsentRecord.

    Raises:
        InvalidConsentSourceError: If the source is not acceptable.
    """
    validate_consent_source(category, source)
    now = now or utc_now()
    rules = CATEGORY_RULES[category]

    return ConsentRecord(
        id=f"offline-{uuid4().hex}",
        guardian_id=guardian_id,
        student_id=student_id,
        category=category,
        status=status,
        source=source,
        granted_at=now if status == ConsentStatus.GRANTED else None,
        withdrawn_at=now if status == ConsentStatus.WITHDRAWN else None,
        expires_at=(
            add_days(now, rules.expiry_months * DAYS_PER_MONTH) if rules.expiry_months else None
        ),
        recorded_by=recorded_by,
        recorded_by_role=recorded_by_role,
        witness_name=witness_name,
        paper_form_ref=paper_form_ref,
        notes=notes,
        last_reviewed_at=now,
        created_at=now,
        synced_at=None,
    )


def latest_record(records: list[ConsentRecord], category: ConsentCategory) -> ConsentRecord | None:
    """Pick the most recently written record for a category."""
    matching = [r for r in records if r.category == category]
    if not matching:
        return None
    return max(matching, key=_written_at)


def _written_at(record: ConsentRecord) -> datetime:
    written = record.created_at or record.granted_at or record.withdrawn_at
    return ensure_utc(written) if written else datetime.min.replace(tzinfo=timezone.utc)


def consent_summary(
    records: list[ConsentRecord],
    now: datetime | None = None,
) -> dict[ConsentCategory, ConsentStatus]:
    """Summarize consent status per category for one guardian and student.

    Categories without a record report their default status. Expired
    grants report as withdrawn.

    Args:
        records: Records for one (guardian, student).
        now: Reference time for expiry.

    Returns:
        Status per consent category.
    """
    now = now or utc_now()
    summary: dict[ConsentCategory, ConsentStatus] = {}
    for category, rules in CATEGORY_RULES.items():
        record = latest_record(records, category)
        if record is None:
            summary[category] = rules.default_status
        elif is_expired(record.expires_at, now):
            summary[category] = ConsentStatus.WITHDRAWN
        else:
            summary[category] = record.status
    return summary
