# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian notification consent and delivery core.

Decides whether an outbound guardian communication may be sent, to whom
and through which channel, and drives admitted messages through channel
attempts, backoff retries and offline queuing.
"""

__version__ = "0.1.0"
