# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API v1 routes package.

Modules:
    notifications: Admission, delivery, override and offline consent endpoints.
"""

from fastapi import APIRouter

from guardian_notify.api.v1 import notifications

router = APIRouter(prefix="/api/v1")

router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
