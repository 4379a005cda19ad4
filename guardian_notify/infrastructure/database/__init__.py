# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Local device database."""

from guardian_notify.infrastructure.database.connection import DatabaseError, LocalDatabase
from guardian_notify.infrastructure.database.models import (
    Base,
    LocalConsentRecordRow,
    OfflineQueueItemRow,
)

__all__ = [
    "Base",
    "DatabaseError",
    "LocalConsentRecordRow",
    "LocalDatabase",
    "OfflineQueueItemRow",
]
