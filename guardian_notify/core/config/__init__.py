# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package.

Example:
    >>> from guardian_notify.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.admission.timezone)
    'Africa/Lusaka'
"""

from guardian_notify.core.config.settings import (
    AdmissionSettings,
    DeliverySettings,
    GuardianLinkSettings,
    OfflineQueueSettings,
    RedisSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "Settings",
    "AdmissionSettings",
    "GuardianLinkSettings",
    "DeliverySettings",
    "OfflineQueueSettings",
    "RedisSettings",
    "get_settings",
    "clear_settings_cache",
]
