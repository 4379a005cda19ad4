# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Weekly send counters."""

from guardian_notify.infrastructure.counters.send_counter import (
    COUNTER_TTL_SECONDS,
    InMemorySendCounter,
    RedisSendCounter,
    SendCounter,
    SendCounterError,
)

__all__ = [
    "COUNTER_TTL_SECONDS",
    "InMemorySendCounter",
    "RedisSendCounter",
    "SendCounter",
    "SendCounterError",
]
