"""Async SQLAlchemy engine and session factory."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from gmail_archiver.config import DatabaseConfig
from gmail_archiver.db.models import Base


def _make_engine(config: DatabaseConfig) -> AsyncEngine:
    if config.url.startswith("sqlite"):
        engine = create_async_engine(config.url, echo=config.echo)

        # SQLite only enforces ON DELETE CASCADE with this pragma
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_async_engine(config.url, echo=config.echo, pool_size=5, max_overflow=10)


class Database:
    """Holds the engine and its session factory.

    Created once at startup and shared by the store and the API.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.engine = _make_engine(config)
        self.session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()
