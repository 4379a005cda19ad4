# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Local device database connection using SQLAlchemy async.

The local database is a SQLite file on the device. It holds the offline
delivery queue and consent records captured while disconnected, so both
survive a process restart.

Uses SQLAlchemy 2.0 async API with the aiosqlite driver.

Example:
    from guardian_notify.infrastructure.database.connection import LocalDatabase

    database = LocalDatabase(settings.offline_queue.database_url)
    await database.init()

    async with database.session() as session:
        result = await session.execute(select(OfflineQueueItemRow))
        rows = result.scalars().all()
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from guardian_notify.infrastructure.database.models import Base

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class LocalDatabase:
    """Connection to the on-device database.

    Attributes:
        url: Async SQLAlchemy database URL.
        echo: Log SQL statements.
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    async def init(self, create_tables: bool = True) -> None:
        """Create the engine and, optionally, the tables.

        Args:
            create_tables: Create missing tables after connecting.

        Raises:
            DatabaseError: If the engine cannot be created.
        """
        if self._engine is not None:
            return

        try:
            self._engine = create_async_engine(self.url, echo=self.echo)
            self._sessionmaker = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to initialize local database", e) from e

        if create_tables:
            await self.create_all()
        logger.info("Local database initialized: %s", self.url)

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        engine = self.get_engine()
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to create local tables", e) from e

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None

    def get_engine(self) -> AsyncEngine:
        """Get the async engine.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._engine is None:
            raise DatabaseError("Local database not initialized. Call init() first.")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Get an async session.

        The session is committed on success and rolled back on exception.

        Yields:
            AsyncSession for database operations.

        Raises:
            DatabaseError: If the database has not been initialized or
                if a database operation fails.
        """
        if self._sessionmaker is None:
            raise DatabaseError("Local database not initialized. Call init() first.")

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError("Database operation failed", e) from e
            except Exception:
                await session.rollback()
                raise

    async def check_connection(self) -> bool:
        """Check if the database is reachable."""
        if self._engine is None:
            return False

        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False
