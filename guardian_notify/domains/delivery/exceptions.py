# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery domain exceptions.

Transport failures are not exceptions here: they become send_failure
events. These errors signal misuse of the orchestrator.
"""


class DeliveryError(Exception):
    """Base exception for delivery errors."""

    pass


class InvalidTransitionError(DeliveryError):
    """Raised when an event is not valid in the current state."""

    def __init__(self, delivery_id: str, state: str, event: str) -> None:
        self.delivery_id = delivery_id
        self.state = state
        self.event = event
        super().__init__(f"Delivery {delivery_id}: event '{event}' is not valid in state '{state}'")


class DeliveryNotFoundError(DeliveryError):
    """Raised when a delivery id is unknown."""

    pass


class DeliveryAlreadyTerminalError(DeliveryError):
    """Raised when acting on a delivery that already finished."""

    pass


class BlockedDecisionError(DeliveryError):
    """Raised when submitting a decision that was not admitted."""

    pass
