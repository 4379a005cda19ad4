# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery domain.

Tracks each admitted (message, guardian) pair through a state machine
with priority-tiered retries, channel fallback and offline parking.
"""

from guardian_notify.domains.delivery.exceptions import (
    BlockedDecisionError,
    DeliveryAlreadyTerminalError,
    DeliveryError,
    DeliveryNotFoundError,
    InvalidTransitionError,
)
from guardian_notify.domains.delivery.models import (
    TERMINAL_STATES,
    TRANSITIONS,
    ChannelAttemptStatus,
    DeliveryDbStatus,
    DeliveryEvent,
    DeliveryRecord,
    DeliveryState,
    DeliveryStatusSnapshot,
    TransitionRecord,
    db_status_to_state,
    state_to_db_status,
)
from guardian_notify.domains.delivery.orchestrator import AttemptOutcome, DeliveryOrchestrator
from guardian_notify.domains.delivery.policies import (
    RETRY_POLICIES,
    RetryPolicy,
    calculate_backoff,
    next_retry_at,
)
from guardian_notify.domains.delivery.scheduler import RetryScheduler, ScheduledRetry
from guardian_notify.domains.delivery.state_machine import DeliveryStateMachine, FailureOutcome

__all__ = [
    "AttemptOutcome",
    "BlockedDecisionError",
    "ChannelAttemptStatus",
    "DeliveryAlreadyTerminalError",
    "DeliveryDbStatus",
    "DeliveryError",
    "DeliveryEvent",
    "DeliveryNotFoundError",
    "DeliveryOrchestrator",
    "DeliveryRecord",
    "DeliveryState",
    "DeliveryStateMachine",
    "DeliveryStatusSnapshot",
    "FailureOutcome",
    "InvalidTransitionError",
    "RETRY_POLICIES",
    "RetryPolicy",
    "RetryScheduler",
    "ScheduledRetry",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "TransitionRecord",
    "calculate_backoff",
    "db_status_to_state",
    "next_retry_at",
    "state_to_db_status",
]
