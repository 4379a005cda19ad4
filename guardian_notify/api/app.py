# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI application factory.

Example:
    async def factory() -> NotificationService:
        return await build_notification_service(consent_store, transport)

    app = create_app(service_factory=factory)
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable

from fastapi import FastAPI

from guardian_notify import __version__
from guardian_notify.api.v1 import router as v1_router
from guardian_notify.core.config import get_settings
from guardian_notify.services.notification_service import NotificationService
from guardian_notify.utils.logging import setup_logging

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[], Awaitable[NotificationService]]


def create_app(
    service: NotificationService | None = None,
    service_factory: ServiceFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: A ready service to expose.
        service_factory: Builds the service at startup when no service
            is given.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings)
        logger.info("Starting guardian notification API (environment=%s)", settings.environment)

        notification_service = service
        if notification_service is None and service_factory is not None:
            notification_service = await service_factory()
        if notification_service is not None:
            recovered = await notification_service.start()
            logger.info("Notification service started, %d parked deliveries recovered", recovered)
        app.state.notification_service = notification_service

        yield

        if notification_service is not None:
            await notification_service.stop()
        app.state.notification_service = None
        logger.info("Shutting down guardian notification API")

    app = FastAPI(
        title="Guardian Notify API",
        description="Consent-aware guardian notification delivery",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.state.notification_service = service
    app.include_router(v1_router)
    return app
