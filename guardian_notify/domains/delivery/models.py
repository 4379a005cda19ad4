# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Data models for message delivery.

This module defines:
- Delivery states, events and the transition table
- The mutable per-delivery record driven by the state machine
- Read-only status snapshots returned to callers
- Mapping between delivery states and stored status values

delivered is the only success terminal state: sent alone does not
complete a delivery.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from guardian_notify.domains.messaging.models import NotificationMessage
from guardian_notify.infrastructure.notifications.channels.base import ChannelType
from guardian_notify.utils.datetime import format_iso, utc_now


class DeliveryState(str, Enum):
    """Lifecycle state of one delivery."""

    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    AWAITING_RETRY = "awaiting_retry"
    SENT = "sent"
    DELIVERED = "delivered"
    EXHAUSTED = "exhausted"
    OFFLINE_QUEUED = "offline_queued"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {DeliveryState.DELIVERED, DeliveryState.EXHAUSTED, DeliveryState.CANCELLED}
)


class DeliveryEvent(str, Enum):
    """Events that drive the delivery state machine."""

    QUEUE = "queue"
    START_PROCESSING = "start_processing"
    SEND_SUCCESS = "send_success"
    SEND_FAILURE = "send_failure"
    CHANNEL_FALLBACK = "channel_fallback"
    ALL_CHANNELS_FAILED = "all_channels_failed"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"
    RETRY_SCHEDULED = "retry_scheduled"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    NETWORK_OFFLINE = "network_offline"
    NETWORK_ONLINE = "network_online"
    MANUAL_RESEND = "manual_resend"
    CANCEL = "cancel"


_S = DeliveryState
_E = DeliveryEvent

TRANSITIONS: dict[tuple[DeliveryState, DeliveryEvent], DeliveryState] = {
    (_S.IDLE, _E.QUEUE): _S.QUEUED,
    (_S.QUEUED, _E.START_PROCESSING): _S.PROCESSING,
    (_S.PROCESSING, _E.SEND_SUCCESS): _S.SENT,
    (_S.PROCESSING, _E.SEND_FAILURE): _S.AWAITING_RETRY,
    (_S.PROCESSING, _E.CHANNEL_FALLBACK): _S.QUEUED,
    (_S.PROCESSING, _E.ALL_CHANNELS_FAILED): _S.EXHAUSTED,
    (_S.PROCESSING, _E.MAX_RETRIES_EXCEEDED): _S.EXHAUSTED,
    (_S.AWAITING_RETRY, _E.RETRY_SCHEDULED): _S.QUEUED,
    (_S.SENT, _E.DELIVERY_CONFIRMED): _S.DELIVERED,
    (_S.IDLE, _E.NETWORK_OFFLINE): _S.OFFLINE_QUEUED,
    (_S.QUEUED, _E.NETWORK_OFFLINE): _S.OFFLINE_QUEUED,
    (_S.PROCESSING, _E.NETWORK_OFFLINE): _S.OFFLINE_QUEUED,
    (_S.AWAITING_RETRY, _E.NETWORK_OFFLINE): _S.OFFLINE_QUEUED,
    (_S.OFFLINE_QUEUED, _E.NETWORK_ONLINE): _S.QUEUED,
    (_S.EXHAUSTED, _E.MANUAL_RESEND): _S.QUEUED,
    **{
        (state, _E.CANCEL): _S.CANCELLED
        for state in DeliveryState
        if state not in TERMINAL_STATES
    },
}


class DeliveryDbStatus(str, Enum):
    """Coarse status persisted by the message store."""

    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    NO_CHANNEL = "no_channel"
    CANCELLED = "cancelled"


_STATE_TO_DB: dict[DeliveryState, DeliveryDbStatus] = {
    _S.IDLE: DeliveryDbStatus.PENDING,
    _S.QUEUED: DeliveryDbStatus.QUEUED,
    _S.PROCESSING: DeliveryDbStatus.QUEUED,
    _S.AWAITING_RETRY: DeliveryDbStatus.QUEUED,
    _S.OFFLINE_QUEUED: DeliveryDbStatus.QUEUED,
    _S.SENT: DeliveryDbStatus.SENT,
    _S.DELIVERED: DeliveryDbStatus.DELIVERED,
    _S.EXHAUSTED: DeliveryDbStatus.FAILED,
    _S.CANCELLED: DeliveryDbStatus.CANCELLED,
}

_DB_TO_STATE: dict[DeliveryDbStatus, DeliveryState] = {
    DeliveryDbStatus.PENDING: _S.IDLE,
    DeliveryDbStatus.QUEUED: _S.QUEUED,
    DeliveryDbStatus.SENT: _S.SENT,
    DeliveryDbStatus.DELIVERED: _S.DELIVERED,
    DeliveryDbStatus.FAILED: _S.EXHAUSTED,
    DeliveryDbStatus.NO_CHANNEL: _S.EXHAUSTED,
    DeliveryDbStatus.CANCELLED: _S.CANCELLED,
}


def state_to_db_status(state: DeliveryState) -> DeliveryDbStatus:
    """Map a delivery state to the stored status."""
    return _STATE_TO_DB[state]


def db_status_to_state(status: DeliveryDbStatus | str) -> DeliveryState:
    """Map a stored status back to a delivery state."""
    return _DB_TO_STATE[DeliveryDbStatus(status)]


@dataclass
class ChannelAttemptStatus:
    """Per-channel accounting for one delivery.

    Attributes:
        channel: Channel accounted.
        available: Channel could reach the guardian at submission.
        attempts: Send attempts made on this channel.
        retries: Retries scheduled on this channel.
        exhausted: Channel will not be tried again for this delivery.
        last_error: Most recent failure on this channel.
        last_attempt_at: When the channel was last tried.
    """

    channel: ChannelType
    available: bool = True
    attempts: int = 0
    retries: int = 0
    exhausted: bool = False
    last_error: str | None = None
    last_attempt_at: datetime | None = None

    def reset(self) -> None:
        self.attempts = 0
        self.retries = 0
        self.exhausted = False
        self.last_error = None
        self.last_attempt_at = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "available": self.available,
            "attempts": self.attempts,
            "retries": self.retries,
            "exhausted": self.exhausted,
            "last_error": self.last_error,
            "last_attempt_at": format_iso(self.last_attempt_at),
        }


@dataclass(frozen=True)
class TransitionRecord:
    """One applied transition."""

    from_state: DeliveryState
    to_state: DeliveryState
    event: DeliveryEvent
    at: datetime
    detail: str | None = None


@dataclass
class DeliveryRecord:
    """Mutable lifecycle record of one (message, guardian) delivery.

    Only the state machine mutates a record, and only while holding the
    delivery's lock.

    Attributes:
        delivery_id: Delivery identifier.
        message: Message being delivered.
        guardian_id: Target guardian.
        channel_order: Channels to try, in order.
        channels: Per-channel accounting.
        state: Current state.
        current_channel: Channel selected for the current attempt.
        retry_count: Retries scheduled across all channels.
        attempt_count: Send attempts across all channels.
        last_error: Most recent failure.
        next_retry_at: When the pending retry is due.
        provider_message_id: Provider id of the accepted send.
        offline_item_id: Offline queue item holding this delivery.
        cancel_requested: Cancellation was requested.
        created_at: When the delivery was created.
        updated_at: When the record last changed.
        completed_at: When a terminal state was reached.
        history: Applied transitions, oldest first.
    """

    delivery_id: str
    message: NotificationMessage
    guardian_id: str
    channel_order: list[ChannelType]
    channels: dict[ChannelType, ChannelAttemptStatus]
    state: DeliveryState = DeliveryState.IDLE
    current_channel: ChannelType | None = None
    retry_count: int = 0
    attempt_count: int = 0
    last_error: str | None = None
    next_retry_at: datetime | None = None
    provider_message_id: str | None = None
    offline_item_id: str | None = None
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    history: list[TransitionRecord] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        delivery_id: str,
        message: NotificationMessage,
        guardian_id: str,
        channel_order: list[ChannelType],
        now: datetime,
    ) -> "DeliveryRecord":
        """Create an idle record with fresh per-channel accounting."""
        return cls(
            delivery_id=delivery_id,
            message=message,
            guardian_id=guardian_id,
            channel_order=list(channel_order),
            channels={channel: ChannelAttemptStatus(channel=channel) for channel in channel_order},
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class DeliveryStatusSnapshot:
    """Read-only view of a delivery for callers.

    Attributes:
        delivery_id: Delivery identifier.
        message_id: Message identifier.
        guardian_id: Target guardian.
        state: Current state.
        db_status: Coarse stored status.
        current_channel: Channel of the latest attempt.
        attempt_count: Send attempts so far.
        retry_count: Retries scheduled so far.
        next_retry_at: When the pending retry is due.
        last_error: Most recent failure.
        is_terminal: Whether the lifecycle has ended.
        requires_follow_up: Exhausted deliveries need human follow-up.
        channels: Per-channel accounting.
    """

    delivery_id: str
    message_id: str
    guardian_id: str
    state: DeliveryState
    db_status: DeliveryDbStatus
    current_channel: ChannelType | None
    attempt_count: int
    retry_count: int
    next_retry_at: datetime | None
    last_error: str | None
    is_terminal: bool
    requires_follow_up: bool
    channels: tuple[dict[str, Any], ...]

    @classmethod
    def from_record(cls, record: DeliveryRecord) -> "DeliveryStatusSnapshot":
        return cls(
            delivery_id=record.delivery_id,
            message_id=record.message.id,
            guardian_id=record.guardian_id,
            state=record.state,
            db_status=state_to_db_status(record.state),
            current_channel=record.current_channel,
            attempt_count=record.attempt_count,
            retry_count=record.retry_count,
            next_retry_at=record.next_retry_at,
            last_error=record.last_error,
            is_terminal=record.is_terminal,
            requires_follow_up=record.state == DeliveryState.EXHAUSTED,
            channels=tuple(record.channels[c].to_dict() for c in record.channel_order),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "delivery_id": self.delivery_id,
            "message_id": self.message_id,
            "guardian_id": self.guardian_id,
            "state": self.state.value,
            "db_status": self.db_status.value,
            "current_channel": self.current_channel.value if self.current_channel else None,
            "attempt_count": self.attempt_count,
            "retry_count": self.retry_count,
            "next_retry_at": format_iso(self.next_retry_at),
            "last_error": self.last_error,
            "is_terminal": self.is_terminal,
            "requires_follow_up": self.requires_follow_up,
            "channels": list(self.channels),
        }
