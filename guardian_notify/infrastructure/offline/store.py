# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLite-backed offline queue store."""

from sqlalchemy import delete, func, select

from guardian_notify.domains.messaging.models import MessagePriority
from guardian_notify.infrastructure.database.connection import LocalDatabase
from guardian_notify.infrastructure.database.models import OfflineQueueItemRow
from guardian_notify.infrastructure.notifications.channels.base import ChannelType
from guardian_notify.infrastructure.offline.queue import OfflineQueueItem
from guardian_notify.utils.datetime import ensure_utc


def _to_row(item: OfflineQueueItem) -> OfflineQueueItemRow:
    return OfflineQueueItemRow(
        item_id=item.id,
        delivery_id=item.delivery_id,
        student_id=item.student_id,
        guardian_id=item.guardian_id,
        target_channel=item.target_channel.value,
        priority=item.priority.value,
        school_id=item.school_id,
        device_id=item.device_id,
        payload=item.payload,
        created_at=ensure_utc(item.created_at),
    )


def _from_row(row: OfflineQueueItemRow) -> OfflineQueueItem:
    return OfflineQueueItem(
        id=row.item_id,
        delivery_id=row.delivery_id,
        student_id=row.student_id,
        guardian_id=row.guardian_id,
        target_channel=ChannelType(row.target_channel),
        priority=MessagePriority(row.priority),
        payload=row.payload,
        school_id=row.school_id,
        device_id=row.device_id,
        created_at=ensure_utc(row.created_at),
    )


class SQLAlchemyOfflineQueueStore:
    """OfflineQueueStore persisted in the local database."""

    def __init__(self, database: LocalDatabase) -> None:
        self._database = database

    async def enqueue(self, item: OfflineQueueItem) -> None:
        async with self._database.session() as session:
            session.add(_to_row(item))

    async def remove(self, item_id: str) -> bool:
        async with self._database.session() as session:
            result = await session.execute(
                delete(OfflineQueueItemRow).where(OfflineQueueItemRow.item_id == item_id)
            )
            return result.rowcount > 0

    async def list_pending(self) -> list[OfflineQueueItem]:
        async with self._database.session() as session:
            result = await session.execute(
                select(OfflineQueueItemRow).order_by(
                    OfflineQueueItemRow.created_at,
                    OfflineQueueItemRow.seq,
                )
            )
            return [_from_row(row) for row in result.scalars().all()]

    async def count(self) -> int:
        async with self._database.session() as session:
            result = await session.execute(select(func.count()).select_from(OfflineQueueItemRow))
            return int(result.scalar_one())

    async def clear(self) -> int:
        async with self._database.session() as session:
            result = await session.execute(delete(OfflineQueueItemRow))
            return result.rowcount
