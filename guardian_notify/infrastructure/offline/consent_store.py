# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consent records captured on the device while offline.

Records are kept one per (guardian, student, category): a newer local
decision replaces the older one. synced_at stays empty until the record
reaches the server.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, select, update

from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.infrastructure.database.connection import LocalDatabase
from guardian_notify.infrastructure.database.models import LocalConsentRecordRow
from guardian_notify.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _to_row(record: ConsentRecord) -> LocalConsentRecordRow:
    return LocalConsentRecordRow(
        id=record.id,
        guardian_id=record.guardian_id,
        student_id=record.student_id,
        category=record.category.value,
        status=record.status.value,
        source=record.source.value,
        recorded_by=record.recorded_by,
        recorded_by_role=record.recorded_by_role.value,
        granted_at=ensure_utc(record.granted_at),
        withdrawn_at=ensure_utc(record.withdrawn_at),
        expires_at=ensure_utc(record.expires_at),
        witness_name=record.witness_name,
        paper_form_ref=record.paper_form_ref,
        notes=record.notes,
        created_at=ensure_utc(record.created_at) or utc_now(),
        synced_at=ensure_utc(record.synced_at),
    )


def _from_row(row: LocalConsentRecordRow) -> ConsentRecord:
    return ConsentRecord(
        id=row.id,
        guardian_id=row.guardian_id,
        student_id=row.student_id,
        category=ConsentCategory(row.category),
        status=ConsentStatus(row.status),
        source=ConsentSource(row.source),
        recorded_by=row.recorded_by,
        recorded_by_role=RecorderRole(row.recorded_by_role),
        granted_at=ensure_utc(row.granted_at),
        withdrawn_at=ensure_utc(row.withdrawn_at),
        expires_at=ensure_utc(row.expires_at),
        witness_name=row.witness_name,
        paper_form_ref=row.paper_form_ref,
        notes=row.notes,
        created_at=ensure_utc(row.created_at),
        synced_at=ensure_utc(row.synced_at),
    )


class LocalConsentStore:
    """Consent records persisted in the local database."""

    def __init__(self, database: LocalDatabase) -> None:
        self._database = database

    async def save(self, record: ConsentRecord) -> ConsentRecord:
        """Store a record, replacing any local record for the same subject."""
        async with self._database.session() as session:
            await session.execute(
                delete(LocalConsentRecordRow).where(
                    LocalConsentRecordRow.guardian_id == record.guardian_id,
                    LocalConsentRecordRow.student_id == record.student_id,
                    LocalConsentRecordRow.category == record.category.value,
                )
            )
            session.add(_to_row(record))
        logger.debug(
            "Stored local consent %s for guardian %s (%s)",
            record.id,
            record.guardian_id,
            record.category.value,
        )
        return record

    async def get(
        self,
        guardian_id: str,
        student_id: str,
        category: ConsentCategory,
    ) -> ConsentRecord | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(LocalConsentRecordRow).where(
                    LocalConsentRecordRow.guardian_id == guardian_id,
                    LocalConsentRecordRow.student_id == student_id,
                    LocalConsentRecordRow.category == category.value,
                )
            )
            row = result.scalar_one_or_none()
            return _from_row(row) if row else None

    async def list_unsynced(self) -> list[ConsentRecord]:
        """Records not yet pushed to the server, oldest first."""
        async with self._database.session() as session:
            result = await session.execute(
                select(LocalConsentRecordRow)
                .where(LocalConsentRecordRow.synced_at.is_(None))
                .order_by(LocalConsentRecordRow.created_at)
            )
            return [_from_row(row) for row in result.scalars().all()]

    async def mark_synced(self, record_id: str, synced_at: datetime | None = None) -> bool:
        """Stamp a record as synced.

        Returns:
            True if the record exists.
        """
        async with self._database.session() as session:
            result = await session.execute(
                update(LocalConsentRecordRow)
                .where(LocalConsentRecordRow.id == record_id)
                .values(synced_at=ensure_utc(synced_at) or utc_now())
            )
            return result.rowcount > 0
