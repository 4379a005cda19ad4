# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian domain package.

This package provides guardian identity and guardian-student links:
- Role defaults and rights
- Link invariants and per-student limits
- Shared phone reporting
- Recipient selection by link rights
"""

from guardian_notify.domains.guardians.links import (
    GuardianLinkError,
    InformationalContactRightsError,
    TooManyGuardiansError,
    TooManyPrimaryGuardiansError,
    communication_type_for,
    grant_rights,
    guardians_for_communication,
    shared_phone_groups,
    sort_by_contact_priority,
    validate_link,
    validate_student_links,
)
from guardian_notify.domains.guardians.models import (
    GUARDIAN_ROLES,
    CommunicationType,
    Guardian,
    GuardianRole,
    GuardianStudentLink,
    RoleDefaults,
)

__all__ = [
    "GUARDIAN_ROLES",
    "CommunicationType",
    "Guardian",
    "GuardianRole",
    "GuardianStudentLink",
    "RoleDefaults",
    "GuardianLinkError",
    "InformationalContactRightsError",
    "TooManyGuardiansError",
    "TooManyPrimaryGuardiansError",
    "communication_type_for",
    "grant_rights",
    "guardians_for_communication",
    "shared_phone_groups",
    "sort_by_contact_priority",
    "validate_link",
    "validate_student_links",
]
