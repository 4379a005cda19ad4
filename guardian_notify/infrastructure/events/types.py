# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event type names published on the in-process bus."""


class EventTypes:
    """Namespaced event type constants.

    Subscribers may use fnmatch patterns such as "delivery.*".
    """

    class Delivery:
        DELIVERED = "delivery.delivered"
        EXHAUSTED = "delivery.exhausted"
        CANCELLED = "delivery.cancelled"

    class Consent:
        FOLLOW_UP_REQUESTED = "consent.follow_up_requested"
        OVERRIDE_APPLIED = "consent.override_applied"

    class Audit:
        ALL = "audit.*"
