"""
Async database engine and session factory.

A ``Database`` instance is created by the process bootstrap and handed to the
services that need sessions. There is no module-level engine.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shared.config import Settings

logger = logging.getLogger(__name__)


def async_database_url(url: str) -> str:
    """Ensure we use the asyncpg driver."""
    if "postgresql://" in url and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://")
    if "postgresql+psycopg://" in url:
        url = url.replace("postgresql+psycopg://", "postgresql+asyncpg://")
    return url


class Database:
    """
    Owns the async engine and its session factory.

    Example:
        >>> db = Database.from_settings(get_settings())
        >>> async with db.session() as session:
        ...     await session.execute(text("SELECT 1"))
        >>> await db.dispose()
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        engine = create_async_engine(
            async_database_url(settings.DATABASE_URL),
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
        logger.info("Database engine created")
        return cls(engine)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; rolls back on error and always closes."""
        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")
