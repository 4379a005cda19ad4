# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application services."""

from guardian_notify.services.factory import build_notification_service, build_send_counter
from guardian_notify.services.notification_service import (
    GuardianNotFoundError,
    NotificationService,
    NotificationServiceError,
    OfflineConsentUnavailableError,
    SubmissionResult,
)
from guardian_notify.services.stores import ConsentStore, InMemoryConsentStore

__all__ = [
    "ConsentStore",
    "GuardianNotFoundError",
    "InMemoryConsentStore",
    "NotificationService",
    "NotificationServiceError",
    "OfflineConsentUnavailableError",
    "SubmissionResult",
    "build_notification_service",
    "build_send_counter",
]
