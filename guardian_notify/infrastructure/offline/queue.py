# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Durable queue of deliveries parked while the device is offline.

The queue is ordered by creation time. On reconnection it is replayed
sequentially per student, so an earlier message about a student is
never overtaken by a later one about the same student.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from guardian_notify.domains.messaging.models import MessagePriority
from guardian_notify.infrastructure.notifications.channels.base import ChannelType
from guardian_notify.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class OfflineQueueError(Exception):
    """Base exception for offline queue errors."""

    pass


class OfflineQueueFullError(OfflineQueueError):
    """Raised when the queue holds its maximum number of items."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        super().__init__(f"Offline queue is full ({max_size} items)")


class OfflineQueueItem(BaseModel):
    """One parked delivery.

    Attributes:
        id: Queue item identifier.
        delivery_id: Delivery the item belongs to.
        student_id: Student the message concerns.
        guardian_id: Target guardian.
        target_channel: Channel selected at admission.
        priority: Message priority tier.
        payload: Serialized message and channel order.
        school_id: Sending school.
        device_id: Device that parked the item.
        created_at: When the item was parked.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"oq-{uuid4().hex}")
    delivery_id: str
    student_id: str
    guardian_id: str
    target_channel: ChannelType
    priority: MessagePriority = MessagePriority.NORMAL
    payload: dict[str, Any] = Field(default_factory=dict)
    school_id: str | None = None
    device_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


@runtime_checkable
class OfflineQueueStore(Protocol):
    """Persistence behind the offline queue."""

    async def enqueue(self, item: OfflineQueueItem) -> None:
        ...

    async def remove(self, item_id: str) -> bool:
        ...

    async def list_pending(self) -> list[OfflineQueueItem]:
        """Return all items ordered by (created_at, insertion order)."""
        ...

    async def count(self) -> int:
        ...

    async def clear(self) -> int:
        ...


class OfflineQueue:
    """Bounded offline queue over a durable store.

    Enqueues are serialized so the size check and the insert cannot
    interleave across tasks.

    Attributes:
        max_size: Maximum number of items.
    """

    def __init__(self, store: OfflineQueueStore, max_size: int = 100) -> None:
        self._store = store
        self.max_size = max_size
        self._lock = asyncio.Lock()

    async def enqueue(self, item: OfflineQueueItem) -> OfflineQueueItem:
        """Persist an item.

        Raises:
            OfflineQueueFullError: If the queue is full.
        """
        async with self._lock:
            if await self.is_full():
                logger.warning("Offline queue full, cannot park delivery %s", item.delivery_id)
                raise OfflineQueueFullError(self.max_size)
            await self._store.enqueue(item)
        logger.debug("Parked delivery %s as %s", item.delivery_id, item.id)
        return item

    async def dequeue(self, item_id: str) -> bool:
        return await self._store.remove(item_id)

    async def list_pending(self) -> list[OfflineQueueItem]:
        return await self._store.list_pending()

    async def count(self) -> int:
        return await self._store.count()

    async def is_full(self) -> bool:
        return await self._store.count() >= self.max_size

    async def clear(self) -> int:
        return await self._store.clear()
