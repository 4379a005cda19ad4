# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Transport gateway over registered channels.

The delivery core talks to transports only through the TransportGateway
contract: which channels can reach a guardian, and send one body on one
channel. ChannelGateway implements it over a set of BaseChannel adapters
and a guardian lookup.
"""

import logging
from typing import Protocol, runtime_checkable

from guardian_notify.domains.guardians.models import Guardian
from guardian_notify.infrastructure.notifications.channels.base import (
    BaseChannel,
    ChannelAvailability,
    ChannelResult,
    ChannelType,
    FailureReason,
    SendStatus,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class TransportGateway(Protocol):
    """Transport collaborator consumed by admission and delivery."""

    async def capabilities(self, guardian_id: str) -> ChannelAvailability:
        """Report which channels can reach a guardian."""
        ...

    async def send(
        self,
        channel: ChannelType,
        guardian_id: str,
        body: str,
        subject: str | None = None,
    ) -> ChannelResult:
        """Send one rendered body on one channel."""
        ...


class GuardianLookup(Protocol):
    """Source of guardian contact details."""

    async def get_guardian(self, guardian_id: str) -> Guardian | None:
        ...


class ChannelGateway:
    """TransportGateway backed by registered channel adapters.

    Attributes:
        channels: Registered adapters keyed by channel type.
    """

    def __init__(self, guardians: GuardianLookup, channels: list[BaseChannel]) -> None:
        self._guardians = guardians
        self.channels: dict[ChannelType, BaseChannel] = {c.channel_type: c for c in channels}

    async def capabilities(self, guardian_id: str) -> ChannelAvailability:
        guardian = await self._guardians.get_guardian(guardian_id)
        if guardian is None:
            return ChannelAvailability()

        def reachable(channel_type: ChannelType) -> bool:
            channel = self.channels.get(channel_type)
            return channel is not None and channel.can_reach(guardian)

        return ChannelAvailability(
            whatsapp=reachable(ChannelType.WHATSAPP),
            sms=reachable(ChannelType.SMS),
            email=reachable(ChannelType.EMAIL),
        )

    async def send(
        self,
        channel: ChannelType,
        guardian_id: str,
        body: str,
        subject: str | None = None,
    ) -> ChannelResult:
        adapter = self.channels.get(channel)
        if adapter is None:
            return ChannelResult(
                channel=channel,
                status=SendStatus.FAILED,
                error_message=f"No adapter registered for {channel.value}",
                failure_reason=FailureReason.CHANNEL_UNAVAILABLE,
            )

        guardian = await self._guardians.get_guardian(guardian_id)
        if guardian is None or not adapter.can_reach(guardian):
            return adapter.create_failure_result(
                f"Guardian {guardian_id} has no {channel.value} address",
                FailureReason.CHANNEL_UNAVAILABLE,
            )

        logger.debug("Sending via %s to guardian %s", channel.value, guardian_id)
        return await adapter.send(guardian, body, subject)
