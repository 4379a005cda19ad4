# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Role-gated consent overrides.

A teacher or admin may force a held message through when the category's
fallback rules permit their role. Every applied override is appended to
the audit sink. Explicit withdrawal can never be overridden.
"""

import logging
from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from guardian_notify.domains.consent.exceptions import (
    OverrideNotPermittedError,
    WithdrawnConsentOverrideError,
)
from guardian_notify.domains.consent.models import (
    CATEGORY_RULES,
    ConsentCategory,
    ConsentClarity,
    ConsentStatus,
)
from guardian_notify.domains.consent.resolver import OverrideRole
from guardian_notify.infrastructure.audit.sink import AuditEntry, AuditSink
from guardian_notify.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class OverrideReason(str, Enum):
    """Why staff forced a held message through."""

    VERBAL_CONFIRMATION = "verbal_confirmation"
    PAPER_CONSENT_PENDING = "paper_consent_pending"
    ADMIN_DISCRETION = "admin_discretion"
    TIME_SENSITIVE = "time_sensitive"
    PARENT_REQUESTED = "parent_requested"
    CORRECTION_TO_PRIOR = "correction_to_prior"


OVERRIDE_REASON_LABELS: dict[OverrideReason, str] = {
    OverrideReason.VERBAL_CONFIRMATION: "verbal confirmation received",
    OverrideReason.PAPER_CONSENT_PENDING: "paper consent form submitted",
    OverrideReason.ADMIN_DISCRETION: "admin discretion",
    OverrideReason.TIME_SENSITIVE: "time-sensitive communication",
    OverrideReason.PARENT_REQUESTED: "parent explicitly requested",
    OverrideReason.CORRECTION_TO_PRIOR: "correction to prior record",
}

WITNESS_REQUIRED_REASONS = frozenset(
    {OverrideReason.VERBAL_CONFIRMATION, OverrideReason.PARENT_REQUESTED}
)

_TEACHER_REASONS = (
    OverrideReason.VERBAL_CONFIRMATION,
    OverrideReason.PAPER_CONSENT_PENDING,
    OverrideReason.PARENT_REQUESTED,
)

ROLE_OVERRIDE_REASONS: dict[OverrideRole, tuple[OverrideReason, ...]] = {
    OverrideRole.TEACHER: _TEACHER_REASONS,
    OverrideRole.ADMIN: (
        *_TEACHER_REASONS,
        OverrideReason.ADMIN_DISCRETION,
        OverrideReason.TIME_SENSITIVE,
        OverrideReason.CORRECTION_TO_PRIOR,
    ),
}


class OverrideRequest(BaseModel):
    """A staff request to force one held message through.

    Attributes:
        message_id: Message being overridden.
        guardian_id: Target guardian.
        student_id: Student concerned.
        category: Consent category of the message.
        reason: Why the override is needed.
        notes: Additional free-text context.
        overridden_by: User id of the staff member.
        overridden_by_role: Role of the staff member.
        witness_name: Witness, required for verbal and parent-requested reasons.
        expires_after_send: Override covers this message only.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str
    guardian_id: str
    student_id: str
    category: ConsentCategory
    reason: OverrideReason
    notes: str | None = None
    overridden_by: str
    overridden_by_role: OverrideRole
    witness_name: str | None = None
    expires_after_send: bool = True

    @model_validator(mode="after")
    def validate_witness(self) -> "OverrideRequest":
        """Require a witness for reasons based on a guardian's word."""
        if self.reason in WITNESS_REQUIRED_REASONS and not self.witness_name:
            raise ValueError(f"Override reason '{self.reason.value}' requires a witness name")
        return self


class OverrideLogEntry(BaseModel):
    """Record of an applied override.

    Attributes:
        id: Log entry identifier.
        timestamp: When the override was applied.
        request: The override request.
        original_status: Stored consent status before the override.
        original_clarity: Consent clarity before the override.
        audit_id: Identifier returned by the audit sink.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=utc_now)
    request: OverrideRequest
    original_status: ConsentStatus
    original_clarity: ConsentClarity
    audit_id: str


def can_role_override(category: ConsentCategory, role: OverrideRole) -> bool:
    """Check whether a role may override held messages in a category."""
    fallback = CATEGORY_RULES[category].fallback
    if role == OverrideRole.TEACHER:
        return fallback.can_teacher_override
    return fallback.can_admin_override


def build_override_summary(request: OverrideRequest, clarity: ConsentClarity) -> str:
    """Build the audit summary line for an override."""
    return (
        f"Consent override applied for {request.category.value} (was: {clarity.value}). "
        f"Reason: {OVERRIDE_REASON_LABELS[request.reason]}. "
        f"Authorized by {request.overridden_by_role.value}."
    )


class ConsentOverrideService:
    """Applies role-gated overrides and records them in the audit log.

    Attributes:
        audit_sink: Append-only audit collaborator.
    """

    def __init__(self, audit_sink: AuditSink) -> None:
        self.audit_sink = audit_sink

    async def apply(
        self,
        request: OverrideRequest,
        original_status: ConsentStatus | None,
        original_clarity: ConsentClarity,
    ) -> OverrideLogEntry:
        """Validate and record an override.

        Args:
            request: Override request.
            original_status: Stored status before the override, None if no
                record existed.
            original_clarity: Consent clarity before the override.

        Returns:
            OverrideLogEntry carrying the audit id.

        Raises:
            OverrideNotPermittedError: If the role may not override the
                category or may not cite the given reason.
            WithdrawnConsentOverrideError: If the consent was explicitly
                withdrawn.
        """
        role = request.overridden_by_role
        if not can_role_override(request.category, role):
            raise OverrideNotPermittedError(
                f"Role '{role.value}' cannot override consent for {request.category.value}"
            )
        if request.reason not in ROLE_OVERRIDE_REASONS[role]:
            raise OverrideNotPermittedError(
                f"Role '{role.value}' cannot cite override reason '{request.reason.value}'"
            )
        if original_status == ConsentStatus.WITHDRAWN:
            raise WithdrawnConsentOverrideError("Cannot override explicitly withdrawn consent")

        audit_id = await self.audit_sink.append(
            AuditEntry(
                entity_type="consent_override",
                entity_id=request.message_id,
                action="consent_override_applied",
                actor_type=role.value,
                actor_id=request.overridden_by,
                summary=build_override_summary(request, original_clarity),
                metadata={
                    "guardian_id": request.guardian_id,
                    "student_id": request.student_id,
                    "category": request.category.value,
                    "override_reason": request.reason.value,
                    "original_status": original_status.value if original_status else None,
                    "original_clarity": original_clarity.value,
                    "notes": request.notes,
                    "witness_name": request.witness_name,
                    "expires_after_send": request.expires_after_send,
                },
            )
        )

        logger.info(
            "Consent override applied: message=%s guardian=%s category=%s by %s",
            request.message_id,
            request.guardian_id,
            request.category.value,
            role.value,
        )

        return OverrideLogEntry(
            request=request,
            original_status=original_status or ConsentStatus.NOT_REQUESTED,
            original_clarity=original_clarity,
            audit_id=audit_id,
        )
