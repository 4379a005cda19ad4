# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery state machine.

Applies events to a DeliveryRecord through the transition table and
keeps the retry accounting. The machine is synchronous and does no I/O;
the orchestrator calls it while holding the delivery's lock.

Failure handling on the current channel:
1. Failure is not retryable (invalid number, content blocked and the
   like): go straight to step 4.
2. Channel and total retry budgets remain: schedule a backoff retry.
3. Channel budget remains but the total budget is spent: exhausted.
4. Mark the channel exhausted and fall back to the next untried
   available channel, or exhaust when none remains.
"""

import logging
from datetime import datetime
from enum import Enum

from guardian_notify.domains.delivery.exceptions import InvalidTransitionError
from guardian_notify.domains.delivery.models import (
    TERMINAL_STATES,
    TRANSITIONS,
    DeliveryEvent,
    DeliveryRecord,
    DeliveryState,
    TransitionRecord,
)
from guardian_notify.domains.delivery.policies import RetryPolicy, next_retry_at
from guardian_notify.infrastructure.notifications.channels.base import ChannelType, FailureReason

logger = logging.getLogger(__name__)


class FailureOutcome(str, Enum):
    """What a send failure led to."""

    RETRY = "retry"
    FALLBACK = "fallback"
    EXHAUSTED = "exhausted"


class DeliveryStateMachine:
    """Drives one DeliveryRecord through its lifecycle.

    Attributes:
        record: The record being driven.
        policy: Retry budget for the message's priority tier.
    """

    def __init__(self, record: DeliveryRecord, policy: RetryPolicy) -> None:
        self.record = record
        self.policy = policy

    @property
    def state(self) -> DeliveryState:
        return self.record.state

    def can_fire(self, event: DeliveryEvent) -> bool:
        return (self.record.state, event) in TRANSITIONS

    def fire(
        self,
        event: DeliveryEvent,
        now: datetime,
        detail: str | None = None,
    ) -> DeliveryState:
        """Apply one event.

        Args:
            event: Event to apply.
            now: Current time.
            detail: Optional note kept in the history.

        Returns:
            The new state.

        Raises:
            InvalidTransitionError: If the event is not valid in the
                current state.
        """
        record = self.record
        target = TRANSITIONS.get((record.state, event))
        if target is None:
            raise InvalidTransitionError(record.delivery_id, record.state.value, event.value)

        record.history.append(
            TransitionRecord(
                from_state=record.state,
                to_state=target,
                event=event,
                at=now,
                detail=detail,
            )
        )
        logger.debug(
            "Delivery %s: %s --%s--> %s",
            record.delivery_id,
            record.state.value,
            event.value,
            target.value,
        )
        record.state = target
        record.updated_at = now
        if target in TERMINAL_STATES:
            record.completed_at = now
        return target

    def next_channel(self) -> ChannelType | None:
        """Select the channel for the next attempt.

        Keeps the current channel while it has budget, otherwise the
        first available channel in order that is not exhausted.
        """
        record = self.record
        current = record.current_channel
        if current is not None and not record.channels[current].exhausted:
            return current
        for channel in record.channel_order:
            status = record.channels[channel]
            if status.available and not status.exhausted:
                return channel
        return None

    def queue(self, now: datetime) -> DeliveryState:
        return self.fire(DeliveryEvent.QUEUE, now)

    def start_processing(self, now: datetime) -> ChannelType:
        """Move to processing and pick the channel to try.

        Raises:
            InvalidTransitionError: If not queued or no channel remains.
        """
        channel = self.next_channel()
        if channel is None:
            raise InvalidTransitionError(
                self.record.delivery_id,
                self.record.state.value,
                DeliveryEvent.START_PROCESSING.value,
            )
        self.fire(DeliveryEvent.START_PROCESSING, now, detail=channel.value)

        record = self.record
        record.current_channel = channel
        record.next_retry_at = None
        status = record.channels[channel]
        status.attempts += 1
        status.last_attempt_at = now
        record.attempt_count += 1
        return channel

    def record_success(self, now: datetime, provider_message_id: str | None = None) -> DeliveryState:
        self.record.provider_message_id = provider_message_id
        self.record.last_error = None
        return self.fire(DeliveryEvent.SEND_SUCCESS, now, detail=provider_message_id)

    def record_failure(
        self,
        now: datetime,
        error: str,
        failure_reason: FailureReason | None = None,
    ) -> FailureOutcome:
        """Account a failed attempt on the current channel.

        A non-retryable failure spends no retry budget: the channel is
        exhausted at once and the next channel is tried.

        Args:
            now: Current time.
            error: Failure description.
            failure_reason: Classification; None counts as a provider error.

        Returns:
            RETRY when a backoff retry was scheduled (state
            awaiting_retry), FALLBACK when the next channel was queued
            (state queued), EXHAUSTED when the delivery gave up.
        """
        record = self.record
        if record.state != DeliveryState.PROCESSING or record.current_channel is None:
            raise InvalidTransitionError(
                record.delivery_id, record.state.value, DeliveryEvent.SEND_FAILURE.value
            )

        channel = record.current_channel
        status = record.channels[channel]
        status.last_error = error
        record.last_error = error
        retryable = failure_reason is None or failure_reason.retryable

        if retryable and status.retries < self.policy.max_retries_per_channel:
            if record.retry_count < self.policy.max_total_retries:
                record.next_retry_at = next_retry_at(now, record.retry_count, self.policy)
                status.retries += 1
                record.retry_count += 1
                self.fire(DeliveryEvent.SEND_FAILURE, now, detail=error)
                return FailureOutcome.RETRY
            self.fire(DeliveryEvent.MAX_RETRIES_EXCEEDED, now, detail=error)
            return FailureOutcome.EXHAUSTED

        status.exhausted = True
        fallback = self.next_channel()
        if fallback is None:
            self.fire(DeliveryEvent.ALL_CHANNELS_FAILED, now, detail=error)
            return FailureOutcome.EXHAUSTED

        record.current_channel = fallback
        self.fire(DeliveryEvent.CHANNEL_FALLBACK, now, detail=f"{channel.value}->{fallback.value}")
        return FailureOutcome.FALLBACK

    def retry_due(self, now: datetime) -> DeliveryState:
        self.record.next_retry_at = None
        return self.fire(DeliveryEvent.RETRY_SCHEDULED, now)

    def confirm(self, now: datetime) -> DeliveryState:
        return self.fire(DeliveryEvent.DELIVERY_CONFIRMED, now)

    def go_offline(self, now: datetime) -> DeliveryState:
        self.record.next_retry_at = None
        return self.fire(DeliveryEvent.NETWORK_OFFLINE, now)

    def go_online(self, now: datetime) -> DeliveryState:
        return self.fire(DeliveryEvent.NETWORK_ONLINE, now)

    def cancel(self, now: datetime) -> DeliveryState:
        self.record.next_retry_at = None
        return self.fire(DeliveryEvent.CANCEL, now)

    def manual_resend(self, now: datetime) -> DeliveryState:
        """Re-queue an exhausted delivery with fresh retry budgets."""
        state = self.fire(DeliveryEvent.MANUAL_RESEND, now)
        record = self.record
        for status in record.channels.values():
            status.reset()
        record.retry_count = 0
        record.current_channel = None
        record.last_error = None
        record.completed_at = None
        record.cancel_requested = False
        return state
