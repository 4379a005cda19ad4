# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Priority-tiered retry budgets and exponential backoff."""

from dataclasses import dataclass
from datetime import datetime

from guardian_notify.domains.messaging.models import MessagePriority
from guardian_notify.utils.datetime import add_seconds


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one priority tier.

    Attributes:
        max_retries_per_channel: Retries allowed on one channel before
            falling back to the next.
        max_total_retries: Retries allowed across all channels.
        base_delay_seconds: Delay before the first retry.
        max_delay_seconds: Upper bound on any delay.
        backoff_multiplier: Growth factor per retry, at least 1.
    """

    max_retries_per_channel: int
    max_total_retries: int
    base_delay_seconds: float
    max_delay_seconds: float
    backoff_multiplier: float

    def __post_init__(self) -> None:
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError("base_delay_seconds cannot exceed max_delay_seconds")


RETRY_POLICIES: dict[MessagePriority, RetryPolicy] = {
    MessagePriority.EMERGENCY: RetryPolicy(
        max_retries_per_channel=3,
        max_total_retries=8,
        base_delay_seconds=30,
        max_delay_seconds=30 * 60,
        backoff_multiplier=1.5,
    ),
    MessagePriority.HIGH: RetryPolicy(
        max_retries_per_channel=2,
        max_total_retries=6,
        base_delay_seconds=45,
        max_delay_seconds=45 * 60,
        backoff_multiplier=2.0,
    ),
    MessagePriority.NORMAL: RetryPolicy(
        max_retries_per_channel=2,
        max_total_retries=5,
        base_delay_seconds=60,
        max_delay_seconds=60 * 60,
        backoff_multiplier=2.0,
    ),
    MessagePriority.LOW: RetryPolicy(
        max_retries_per_channel=1,
        max_total_retries=3,
        base_delay_seconds=120,
        max_delay_seconds=2 * 60 * 60,
        backoff_multiplier=2.5,
    ),
}


def calculate_backoff(retry_count: int, policy: RetryPolicy) -> float:
    """Compute the delay before a retry.

    delay = min(base * multiplier ** retry_count, max_delay)

    Args:
        retry_count: Retries already scheduled for the delivery.
        policy: Retry policy of the message's tier.

    Returns:
        Delay in seconds, non-decreasing in retry_count and capped.

    Raises:
        ValueError: If retry_count is negative.
    """
    if retry_count < 0:
        raise ValueError("retry_count cannot be negative")
    try:
        delay = policy.base_delay_seconds * policy.backoff_multiplier**retry_count
    except OverflowError:
        return policy.max_delay_seconds
    return min(delay, policy.max_delay_seconds)


def next_retry_at(now: datetime, retry_count: int, policy: RetryPolicy) -> datetime:
    """Compute when the next retry is due."""
    return add_seconds(now, calculate_backoff(retry_count, policy))
