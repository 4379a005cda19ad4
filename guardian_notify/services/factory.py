# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Wiring of the notification service from settings.

Example:
    service = await build_notification_service(consent_store, transport)
    await service.start()
"""

import logging

from guardian_notify.core.config.settings import Settings, get_settings
from guardian_notify.domains.admission.controller import AdmissionController
from guardian_notify.domains.delivery.orchestrator import DeliveryOrchestrator
from guardian_notify.infrastructure.audit.sink import EventBusAuditSink
from guardian_notify.infrastructure.counters.send_counter import (
    InMemorySendCounter,
    RedisSendCounter,
    SendCounter,
)
from guardian_notify.infrastructure.database.connection import LocalDatabase
from guardian_notify.infrastructure.events.bus import EventBus
from guardian_notify.infrastructure.notifications.gateway import TransportGateway
from guardian_notify.infrastructure.offline.consent_store import LocalConsentStore
from guardian_notify.infrastructure.offline.queue import OfflineQueue
from guardian_notify.infrastructure.offline.store import SQLAlchemyOfflineQueueStore
from guardian_notify.services.notification_service import NotificationService
from guardian_notify.services.stores import ConsentStore

logger = logging.getLogger(__name__)


def build_send_counter(settings: Settings) -> SendCounter:
    """Create the weekly send counter for the configured backend."""
    if settings.send_counter_backend == "redis":
        return RedisSendCounter.from_settings(settings.redis)
    return InMemorySendCounter()


async def build_notification_service(
    consent_store: ConsentStore,
    transport: TransportGateway,
    settings: Settings | None = None,
    event_bus: EventBus | None = None,
) -> NotificationService:
    """Create a NotificationService backed by the local database.

    Args:
        consent_store: School consent and guardian records.
        transport: Channel transport gateway.
        settings: Application settings, defaults to get_settings().
        event_bus: Event bus, a new one when omitted.

    Returns:
        A service whose local database is initialized. Call start()
        before use and stop() on shutdown.
    """
    settings = settings or get_settings()
    event_bus = event_bus or EventBus()

    database = LocalDatabase(settings.offline_queue.database_url, echo=settings.offline_queue.echo)
    await database.init()

    orchestrator = DeliveryOrchestrator(
        transport,
        OfflineQueue(SQLAlchemyOfflineQueueStore(database), max_size=settings.offline_queue.max_size),
        event_bus=event_bus,
        settings=settings.delivery,
        device_id=settings.offline_queue.device_id,
    )
    logger.info(
        "Notification service wired: counter=%s, offline store=%s",
        settings.send_counter_backend,
        settings.offline_queue.database_url,
    )
    return NotificationService(
        consent_store,
        transport,
        orchestrator,
        build_send_counter(settings),
        EventBusAuditSink(event_bus),
        controller=AdmissionController(settings.admission),
        local_consent_store=LocalConsentStore(database),
        event_bus=event_bus,
        settings=settings,
        database=database,
    )
