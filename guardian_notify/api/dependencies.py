# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

Example:
    @router.get("/deliveries/{delivery_id}")
    async def get_delivery(
        delivery_id: str,
        service: NotificationService = Depends(get_notification_service),
    ):
        ...
"""

from fastapi import HTTPException, Request, status

from guardian_notify.services.notification_service import NotificationService


def get_notification_service(request: Request) -> NotificationService:
    """Get the notification service attached to the application.

    Raises:
        HTTPException: 503 if the service has not been started.
    """
    service = getattr(request.app.state, "notification_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification service not available",
        )
    return service
