# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery channels."""

from guardian_notify.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelAvailability,
    ChannelResult,
    ChannelType,
    FailureReason,
    SendStatus,
    TransportOfflineError,
)

__all__ = [
    "BaseChannel",
    "ChannelAvailability",
    "ChannelResult",
    "ChannelType",
    "FailureReason",
    "SendStatus",
    "TransportOfflineError",
]
