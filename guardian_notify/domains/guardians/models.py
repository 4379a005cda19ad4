# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Data models for guardians and their links to students.

A guardian may be linked to several students and a student to several
guardians. Each link carries a role and a set of rights. Phone numbers
are not unique: households commonly share one phone.
"""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class GuardianRole(str, Enum):
    """Role of a guardian relative to one student."""

    PRIMARY_GUARDIAN = "primary_guardian"
    SECONDARY_GUARDIAN = "secondary_guardian"
    INFORMATIONAL_CONTACT = "informational_contact"


class CommunicationType(str, Enum):
    """Kind of communication, matched against link rights."""

    EMERGENCY = "emergency"
    REPORT = "report"
    GENERAL = "general"


@dataclass(frozen=True)
class RoleDefaults:
    """Default rights and contact priority for a role.

    Attributes:
        label: Human-readable role name.
        can_pickup: May collect the student from school.
        can_make_decisions: May make decisions for the student.
        can_receive_reports: Receives academic reports.
        can_receive_emergency: Receives emergency alerts.
        receives_all_communications: Receives routine communications.
        contact_priority: Default contact order, lower is contacted first.
    """

    label: str
    can_pickup: bool
    can_make_decisions: bool
    can_receive_reports: bool
    can_receive_emergency: bool
    receives_all_communications: bool
    contact_priority: int


GUARDIAN_ROLES: dict[GuardianRole, RoleDefaults] = {
    GuardianRole.PRIMARY_GUARDIAN: RoleDefaults(
        label="Primary guardian",
        can_pickup=True,
        can_make_decisions=True,
        can_receive_reports=True,
        can_receive_emergency=True,
        receives_all_communications=True,
        contact_priority=1,
    ),
    GuardianRole.SECONDARY_GUARDIAN: RoleDefaults(
        label="Secondary guardian",
        can_pickup=False,
        can_make_decisions=False,
        can_receive_reports=True,
        can_receive_emergency=True,
        receives_all_communications=True,
        contact_priority=2,
    ),
    GuardianRole.INFORMATIONAL_CONTACT: RoleDefaults(
        label="Informational contact",
        can_pickup=False,
        can_make_decisions=False,
        can_receive_reports=True,
        can_receive_emergency=False,
        receives_all_communications=False,
        contact_priority=99,
    ),
}


class Guardian(BaseModel):
    """Identity of a parent or guardian.

    Attributes:
        id: Guardian identifier.
        display_name: Name shown to staff.
        phone: Phone number used for SMS.
        whatsapp_number: Number registered with WhatsApp.
        email: Email address.
        user_id: Linked application account, if any.
        school_id: School the guardian belongs to.
        preferred_language: Language for rendered messages.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    phone: str | None = None
    whatsapp_number: str | None = None
    email: str | None = None
    user_id: str | None = None
    school_id: str | None = None
    preferred_language: str = "en"


class GuardianStudentLink(BaseModel):
    """Edge between a guardian and a student.

    Attributes:
        guardian_id: Linked guardian.
        student_id: Linked student.
        role: Guardian's role for this student.
        can_pickup: May collect the student.
        can_make_decisions: May make decisions for the student.
        can_receive_reports: Receives academic reports.
        can_receive_emergency: Receives emergency alerts.
        receives_all_communications: Receives routine communications.
        contact_priority: Contact order, lower is contacted first.
    """

    model_config = ConfigDict(frozen=True)

    guardian_id: str
    student_id: str
    role: GuardianRole
    can_pickup: bool = False
    can_make_decisions: bool = False
    can_receive_reports: bool = True
    can_receive_emergency: bool = True
    receives_all_communications: bool = True
    contact_priority: int = 2

    @model_validator(mode="after")
    def validate_informational_rights(self) -> "GuardianStudentLink":
        """Reject pickup or decision rights on an informational contact."""
        if self.role == GuardianRole.INFORMATIONAL_CONTACT and (
            self.can_pickup or self.can_make_decisions
        ):
            raise ValueError(
                "Informational contacts cannot have pickup or decision-making rights"
            )
        return self

    @property
    def is_primary(self) -> bool:
        """Whether this is a primary guardian link."""
        return self.role == GuardianRole.PRIMARY_GUARDIAN

    def receives(self, communication_type: CommunicationType) -> bool:
        """Whether the link's rights cover a kind of communication."""
        if communication_type == CommunicationType.EMERGENCY:
            return self.can_receive_emergency
        if communication_type == CommunicationType.REPORT:
            return self.can_receive_reports
        return self.receives_all_communications

    @classmethod
    def for_role(cls, guardian_id: str, student_id: str, role: GuardianRole) -> "GuardianStudentLink":
        """Create a link carrying the role's default rights.

        Args:
            guardian_id: Guardian to link.
            student_id: Student to link.
            role: Role of the guardian.

        Returns:
            A new GuardianStudentLink.
        """
        defaults = GUARDIAN_ROLES[role]
        return cls(
            guardian_id=guardian_id,
            student_id=student_id,
            role=role,
            can_pickup=defaults.can_pickup,
            can_make_decisions=defaults.can_make_decisions,
            can_receive_reports=defaults.can_receive_reports,
            can_receive_emergency=defaults.can_receive_emergency,
            receives_all_communications=defaults.receives_all_communications,
            contact_priority=defaults.contact_priority,
        )
