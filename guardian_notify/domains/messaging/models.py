# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Outbound guardian message model."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from guardian_notify.domains.consent.models import ConsentCategory, to_consent_category
from guardian_notify.utils.datetime import utc_now


class MessagePriority(str, Enum):
    """Priority tier; selects the retry budget."""

    EMERGENCY = "emergency"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class NotificationMessage(BaseModel):
    """One outbound communication about a student.

    The category accepts either a consent category or a message category
    such as "fee_status", which is mapped onto its consent category.

    Attributes:
        id: Message identifier.
        category: Consent category of the message.
        student_id: Student the message concerns.
        body: Rendered message body.
        subject: Subject line, used by email.
        priority: Priority tier.
        is_emergency: Explicit emergency flag.
        is_manual: Composed by a human sender rather than automation.
        sender_id: User id of a human sender.
        school_id: School sending the message.
        created_at: When the send was requested.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    category: ConsentCategory
    student_id: str
    body: str
    subject: str | None = None
    priority: MessagePriority = MessagePriority.NORMAL
    is_emergency: bool = False
    is_manual: bool = False
    sender_id: str | None = None
    school_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> ConsentCategory:
        """Map message categories onto consent categories."""
        return to_consent_category(value)

    @property
    def treated_as_emergency(self) -> bool:
        """Whether the message bypasses consent, opt-outs and quiet hours."""
        return self.is_emergency or self.category == ConsentCategory.EMERGENCY_ALERTS

    @property
    def effective_priority(self) -> MessagePriority:
        """Priority tier used for delivery; emergencies always use EMERGENCY."""
        if self.treated_as_emergency:
            return MessagePriority.EMERGENCY
        return self.priority
