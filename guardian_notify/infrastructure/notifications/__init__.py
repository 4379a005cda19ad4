# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Notification transports.

This package provides:
- channels: channel types, results and the BaseChannel adapter contract
- gateway: TransportGateway contract and the ChannelGateway implementation
"""

from guardian_notify.infrastructure.notifications.gateway import (
    ChannelGateway,
    GuardianLookup,
    TransportGateway,
)

__all__ = ["ChannelGateway", "GuardianLookup", "TransportGateway"]
