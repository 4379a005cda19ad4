# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian link validation.

This module provides functions for:
- Granting rights on an existing link without breaking role invariants
- Enforcing per-student guardian limits
- Reporting households that share a phone number
- Selecting the guardians whose rights cover a communication
"""

import logging
from collections import defaultdict

from guardian_notify.core.config.settings import GuardianLinkSettings
from guardian_notify.domains.consent.models import ConsentCategory
from guardian_notify.domains.guardians.models import (
    CommunicationType,
    Guardian,
    GuardianRole,
    GuardianStudentLink,
)

logger = logging.getLogger(__name__)


class GuardianLinkError(Exception):
    """Base exception for guardian link errors."""

    pass


class InformationalContactRightsError(GuardianLinkError):
    """Raised when pickup or decision rights target an informational contact."""

    pass


class TooManyGuardiansError(GuardianLinkError):
    """Raised when a student would exceed the guardian limit."""

    pass


class TooManyPrimaryGuardiansError(GuardianLinkError):
    """Raised when a student would exceed the primary guardian limit."""

    pass


def validate_link(link: GuardianStudentLink) -> GuardianStudentLink:
    """Check that a link respects its role's invariants.

    Args:
        link: Link to check.

    Returns:
        The same link.

    Raises:
        InformationalContactRightsError: If an informational contact holds
            pickup or decision rights.
    """
    if link.role == GuardianRole.INFORMATIONAL_CONTACT and (
        link.can_pickup or link.can_make_decisions
    ):
        raise InformationalContactRightsError(
            f"Guardian {link.guardian_id} is an informational contact for "
            f"student {link.student_id} and cannot hold pickup or decision rights"
        )
    return link


def grant_rights(
    link: GuardianStudentLink,
    *,
    can_pickup: bool | None = None,
    can_make_decisions: bool | None = None,
    can_receive_reports: bool | None = None,
    can_receive_emergency: bool | None = None,
    receives_all_communications: bool | None = None,
) -> GuardianStudentLink:
    """Return a copy of a link with updated rights.

    Args:
        link: Existing link.
        can_pickup: New pickup right, unchanged when None.
        can_make_decisions: New decision right, unchanged when None.
        can_receive_reports: New reports right, unchanged when None.
        can_receive_emergency: New emergency right, unchanged when None.
        receives_all_communications: New routine right, unchanged when None.

    Returns:
        Updated link.

    Raises:
        InformationalContactRightsError: If the change would give an
            informational contact pickup or decision rights.
    """
    changes = {
        name: value
        for name, value in (
            ("can_pickup", can_pickup),
            ("can_make_decisions", can_make_decisions),
            ("can_receive_reports", can_receive_reports),
            ("can_receive_emergency", can_receive_emergency),
            ("receives_all_communications", receives_all_communications),
        )
        if value is not None
    }
    # model_copy skips validation, so invariants are checked explicitly
    return validate_link(link.model_copy(update=changes))


def validate_student_links(
    links: list[GuardianStudentLink],
    settings: GuardianLinkSettings | None = None,
) -> None:
    """Enforce per-student guardian limits.

    Args:
        links: All links for one student.
        settings: Link limits, defaults from environment.

    Raises:
        TooManyGuardiansError: If there are too many guardians.
        TooManyPrimaryGuardiansError: If there are too many primaries.
        InformationalContactRightsError: If any link breaks role invariants.
    """
    settings = settings or GuardianLinkSettings()

    for link in links:
        validate_link(link)

    if len(links) > settings.max_guardians_per_student:
        raise TooManyGuardiansError(
            f"A student can have at most {settings.max_guardians_per_student} guardians"
        )

    primaries = sum(1 for link in links if link.is_primary)
    if primaries > settings.max_primary_guardians:
        raise TooManyPrimaryGuardiansError(
            f"A student can have at most {settings.max_primary_guardians} primary guardians"
        )


def shared_phone_groups(guardians: list[Guardian]) -> dict[str, list[str]]:
    """Group guardians that share a phone number.

    Shared phones are valid. This only reports them so staff know one SMS
    may reach several guardians.

    Args:
        guardians: Guardians to inspect.

    Returns:
        Mapping of phone number to guardian ids, only for shared numbers.
    """
    by_phone: dict[str, list[str]] = defaultdict(list)
    for guardian in guardians:
        if guardian.phone:
            by_phone[guardian.phone].append(guardian.id)
    return {phone: ids for phone, ids in by_phone.items() if len(ids) > 1}


def sort_by_contact_priority(links: list[GuardianStudentLink]) -> list[GuardianStudentLink]:
    """Order links so the guardian to contact first comes first."""
    return sorted(links, key=lambda link: (link.contact_priority, link.guardian_id))


def communication_type_for(
    category: ConsentCategory, is_emergency: bool = False
) -> CommunicationType:
    """Map a message category onto the link right that governs it.

    Academic updates count as reports. Categories other than reports and
    emergencies are general communication.
    """
    if is_emergency or category == ConsentCategory.EMERGENCY_ALERTS:
        return CommunicationType.EMERGENCY
    if category == ConsentCategory.ACADEMIC_UPDATES:
        return CommunicationType.REPORT
    return CommunicationType.GENERAL


def guardians_for_communication(
    links: list[GuardianStudentLink],
    communication_type: CommunicationType,
) -> list[GuardianStudentLink]:
    """Keep the links whose rights cover a kind of communication."""
    return [link for link in links if link.receives(communication_type)]
