# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Offline queue and local consent storage."""

from guardian_notify.infrastructure.offline.consent_store import LocalConsentStore
from guardian_notify.infrastructure.offline.queue import (
    OfflineQueue,
    OfflineQueueError,
    OfflineQueueFullError,
    OfflineQueueItem,
    OfflineQueueStore,
)
from guardian_notify.infrastructure.offline.store import SQLAlchemyOfflineQueueStore

__all__ = [
    "LocalConsentStore",
    "OfflineQueue",
    "OfflineQueueError",
    "OfflineQueueFullError",
    "OfflineQueueItem",
    "OfflineQueueStore",
    "SQLAlchemyOfflineQueueStore",
]
