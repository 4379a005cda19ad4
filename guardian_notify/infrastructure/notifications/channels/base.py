# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Base classes for guardian delivery channels.

This module defines the abstract base class and shared types for all
delivery channels. Each channel hands a rendered message to one medium
(WhatsApp, SMS, email) and reports the outcome as a ChannelResult.

Channels report failures as results rather than raising. The one
exception is TransportOfflineError, raised when the device has no
network at all, which moves the message to the offline queue instead of
spending a retry.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from guardian_notify.domains.guardians.models import Guardian
from guardian_notify.utils.datetime import utc_now


class ChannelType(str, Enum):
    """Available delivery channel types."""

    WHATSAPP = "whatsapp"
    SMS = "sms"
    EMAIL = "email"


class SendStatus(str, Enum):
    """Outcome of one send attempt."""

    SENT = "sent"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Internal classification of a failed send. Never shown to guardians."""

    CHANNEL_UNAVAILABLE = "channel_unavailable"
    RATE_LIMITED = "rate_limited"
    INVALID_NUMBER = "invalid_number"
    NETWORK_ERROR = "network_error"
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"
    REJECTED_BY_RECIPIENT = "rejected_by_recipient"
    CONTENT_BLOCKED = "content_blocked"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether trying the same channel again can succeed."""
        return self in _RETRYABLE_FAILURES


_RETRYABLE_FAILURES = frozenset(
    {
        FailureReason.RATE_LIMITED,
        FailureReason.NETWORK_ERROR,
        FailureReason.PROVIDER_ERROR,
        FailureReason.TIMEOUT,
    }
)


class TransportOfflineError(Exception):
    """Raised by a channel when the device has lost network connectivity."""

    pass


@dataclass(frozen=True)
class ChannelAvailability:
    """Which channels can currently reach a guardian.

    Attributes:
        whatsapp: WhatsApp can reach the guardian.
        sms: SMS can reach the guardian.
        email: Email can reach the guardian.
    """

    whatsapp: bool = False
    sms: bool = False
    email: bool = False

    def is_available(self, channel: ChannelType) -> bool:
        """Check whether a channel is available."""
        return bool(getattr(self, channel.value))

    def any(self) -> bool:
        """Check whether at least one channel is available."""
        return self.whatsapp or self.sms or self.email

    def in_order(self, order: list[ChannelType]) -> list[ChannelType]:
        """List available channels following the given priority."""
        return [channel for channel in order if self.is_available(channel)]

    def to_dict(self) -> dict[str, bool]:
        """Convert to dictionary."""
        return {"whatsapp": self.whatsapp, "sms": self.sms, "email": self.email}


@dataclass
class ChannelResult:
    """Result of a channel send operation.

    Attributes:
        channel: Which channel was used.
        status: Send outcome.
        message_id: External message ID (if available).
        error_message: Error message if failed.
        failure_reason: Classification of a failure. A failure without
            one is treated as a provider error.
        sent_at: When the message was handed to the provider.
        metadata: Additional result metadata.
    """

    channel: ChannelType
    status: SendStatus
    message_id: str | None = None
    error_message: str | None = None
    failure_reason: FailureReason | None = None
    sent_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """Whether the provider accepted the message."""
        return self.status == SendStatus.SENT

    @property
    def retryable(self) -> bool:
        """Whether a failure may be retried on the same channel."""
        reason = self.failure_reason or FailureReason.PROVIDER_ERROR
        return reason.retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage.

        Returns:
            Dictionary representation suitable for JSON columns.
        """
        return {
            "channel": self.channel.value,
            "status": self.status.value,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "metadata": self.metadata,
        }


class BaseChannel(ABC):
    """Abstract base class for delivery channels.

    Attributes:
        channel_type: The type of this channel.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    @abstractmethod
    def channel_type(self) -> ChannelType:
        """Return the channel type."""
        ...

    @abstractmethod
    async def send(self, guardian: Guardian, body: str, subject: str | None = None) -> ChannelResult:
        """Send a rendered message to a guardian.

        Args:
            guardian: Recipient.
            body: Rendered message body.
            subject: Subject line, used by email.

        Returns:
            ChannelResult with the send outcome.

        Raises:
            TransportOfflineError: If the device has no network.
        """
        ...

    def contact_for(self, guardian: Guardian) -> str | None:
        """Get the address this channel would use for a guardian.

        Args:
            guardian: Recipient.

        Returns:
            Phone number, WhatsApp number or email address, or None.
        """
        if self.channel_type == ChannelType.WHATSAPP:
            return guardian.whatsapp_number
        if self.channel_type == ChannelType.SMS:
            return guardian.phone
        return guardian.email

    def can_reach(self, guardian: Guardian) -> bool:
        """Check whether this channel has an address for the guardian."""
        return bool(self.contact_for(guardian))

    def create_success_result(
        self,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        """Create a successful result.

        Args:
            message_id: External message ID.
            metadata: Additional metadata.

        Returns:
            ChannelResult with SENT status.
        """
        return ChannelResult(
            channel=self.channel_type,
            status=SendStatus.SENT,
            message_id=message_id,
            sent_at=utc_now(),
            metadata=metadata or {},
        )

    def create_failure_result(
        self,
        error_message: str,
        failure_reason: FailureReason = FailureReason.PROVIDER_ERROR,
        metadata: dict[str, Any] | None = None,
    ) -> ChannelResult:
        """Create a failure result.

        Args:
            error_message: Description of the failure.
            failure_reason: Classification deciding whether to retry.
            metadata: Additional metadata.

        Returns:
            ChannelResult with FAILED status.
        """
        self.logger.warning("%s send failed: %s", self.channel_type.value, error_message)
        return ChannelResult(
            channel=self.channel_type,
            status=SendStatus.FAILED,
            error_message=error_message,
            failure_reason=failure_reason,
            metadata=metadata or {},
        )
