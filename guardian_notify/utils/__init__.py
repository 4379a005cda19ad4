# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Utility functions and helpers.

This package contains cross-cutting utilities:
- logging: Structured logging with structlog
- datetime: Timezone-aware datetime operations
"""

from guardian_notify.utils.datetime import (
    add_days,
    add_seconds,
    ensure_utc,
    format_iso,
    is_expired,
    iso_week_key,
    local_hour,
    seconds_to_human,
    utc_now,
)
from guardian_notify.utils.logging import delivery_context, setup_logging

__all__ = [
    # Logging
    "setup_logging",
    "delivery_context",
    # Datetime
    "utc_now",
    "ensure_utc",
    "is_expired",
    "local_hour",
    "iso_week_key",
    "add_seconds",
    "add_days",
    "format_iso",
    "seconds_to_human",
]
