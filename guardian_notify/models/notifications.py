# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Request and response models for the notifications API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from guardian_notify.domains.admission.models import AdmissionDecision
from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.domains.consent.overrides import OverrideReason
from guardian_notify.domains.consent.resolver import OverrideRole
from guardian_notify.domains.messaging.models import MessagePriority, NotificationMessage


class MessageRequest(BaseModel):
    """A message to admit or send."""

    id: str | None = Field(default=None, description="Message id, generated when omitted")
    category: str = Field(description="Consent or message category")
    student_id: str = Field(description="Student the message concerns")
    body: str = Field(min_length=1, description="Rendered message body")
    subject: str | None = Field(default=None, description="Subject line, used by email")
    priority: MessagePriority = Field(default=MessagePriority.NORMAL)
    is_emergency: bool = Field(default=False)
    is_manual: bool = Field(default=False, description="Composed by a human sender")
    sender_id: str | None = None
    school_id: str | None = None
    guardian_ids: list[str] | None = Field(
        default=None,
        description="Guardians to target, all linked guardians when omitted",
    )

    def to_message(self) -> NotificationMessage:
        data = self.model_dump(exclude={"guardian_ids"}, exclude_none=True)
        return NotificationMessage.model_validate(data)


class DecisionResponse(BaseModel):
    """Admission decision for one guardian."""

    guardian_id: str
    allowed: bool
    reason: str
    rule: str
    channel: str | None = None
    preferred_channel: str | None = None
    is_fallback: bool = False
    emergency_override: bool = False
    consent_clarity: str | None = None
    can_override: bool = False
    override_role: str | None = None
    conflict_rule: str | None = None

    @classmethod
    def from_decision(cls, decision: AdmissionDecision) -> "DecisionResponse":
        consent = decision.consent
        return cls(
            guardian_id=decision.guardian_id,
            allowed=decision.allowed,
            reason=decision.reason.value,
            rule=decision.rule,
            channel=decision.channel.value if decision.channel else None,
            preferred_channel=decision.preferred_channel.value if decision.preferred_channel else None,
            is_fallback=decision.is_fallback,
            emergency_override=decision.emergency_override,
            consent_clarity=consent.clarity.value if consent else None,
            can_override=consent.can_override if consent else False,
            override_role=consent.override_role.value if consent and consent.override_role else None,
            conflict_rule=decision.conflict.applied_rule if decision.conflict else None,
        )


class AdmitResponse(BaseModel):
    message_id: str
    decisions: list[DecisionResponse]


class SubmitResponse(BaseModel):
    message_id: str
    delivery_ids: dict[str, str] = Field(default_factory=dict)
    blocked: dict[str, str] = Field(default_factory=dict)


class DeliveryStatusResponse(BaseModel):
    """Delivery snapshot."""

    delivery_id: str
    message_id: str
    guardian_id: str
    state: str
    db_status: str
    current_channel: str | None = None
    attempt_count: int
    retry_count: int
    next_retry_at: datetime | None = None
    last_error: str | None = None
    is_terminal: bool
    requires_follow_up: bool
    channels: list[dict[str, Any]] = Field(default_factory=list)


class DeliveryStateResponse(BaseModel):
    delivery_id: str
    state: str


class NetworkResponse(BaseModel):
    online: bool
    affected: int = Field(description="Deliveries parked or replayed")


class OverrideRequestBody(BaseModel):
    """Staff override of a held message for one guardian."""

    message: MessageRequest
    guardian_id: str
    reason: OverrideReason
    overridden_by: str
    overridden_by_role: OverrideRole
    notes: str | None = None
    witness_name: str | None = None


class OverrideResponse(BaseModel):
    decision: DecisionResponse
    override_id: str | None = None
    audit_id: str | None = None
    delivery_id: str | None = None


class OfflineConsentRequest(BaseModel):
    """Consent decision captured on the device."""

    guardian_id: str
    student_id: str
    category: ConsentCategory
    status: ConsentStatus
    source: ConsentSource
    recorded_by: str
    recorded_by_role: RecorderRole
    witness_name: str | None = None
    paper_form_ref: str | None = None
    notes: str | None = None


class ConsentRecordResponse(BaseModel):
    id: str
    guardian_id: str
    student_id: str
    category: str
    status: str
    source: str
    expires_at: datetime | None = None
    created_at: datetime | None = None
    synced_at: datetime | None = None
