"""Async engine for the parcel and audit tables."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from geoestate.core.config import DatabaseConfig
from geoestate.db.base import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Engine plus session factory shared by the SQL repositories.

    PostgreSQL (asyncpg) is the production backend; SQLite (aiosqlite) is
    used by tests and local runs::

        db = DatabaseManager.from_config(settings.db)
        async with db.session() as session:
            ...
        await db.close()
    """

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
    ) -> None:
        self._dialect = make_url(database_url).get_backend_name()
        options: dict[str, Any] = {"echo": echo}
        if self._dialect != "sqlite":
            options.update(pool_size=pool_size, pool_pre_ping=True)
        self._engine: AsyncEngine = create_async_engine(database_url, **options)
        # Rows are read back after commit when building Parcel and audit models.
        self._sessions: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )
        logger.debug("Database engine created for dialect %s", self._dialect)

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> DatabaseManager:
        if not config.database_url:
            raise ValueError("DatabaseConfig.database_url is not set.")
        return cls(config.database_url, echo=config.echo, pool_size=config.pool_size)

    @property
    def dialect(self) -> str:
        return self._dialect

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def supports_row_locks(self) -> bool:
        """SQLite has no ``SELECT ... FOR UPDATE``; it serializes writers instead."""
        return self._dialect != "sqlite"

    def session(self) -> AsyncSession:
        return self._sessions()

    async def create_all(self) -> None:
        """Create the schema directly. Deployed databases are migrated with Alembic."""
        import geoestate.db.models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()
