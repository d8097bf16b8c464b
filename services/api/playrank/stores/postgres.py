"""PostgreSQL engine for the SQL ordered store.

One `get_session()` block is one transaction, and the ordered store opens
one per point write. Nothing here knows about positions.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from playrank.settings import get_settings

logger = logging.getLogger("uvicorn.error")


class Base(DeclarativeBase):
    """Declarative base for playrank tables (see alembic/ for migrations)."""

    pass


# Engine and session factory (initialized on startup)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db() -> None:
    """Create the engine and session factory from settings."""
    global _engine, _session_factory

    settings = get_settings()
    _engine = create_async_engine(
        settings.async_database_url,
        echo=settings.debug,
        connect_args=settings.asyncpg_connect_args,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    logger.info(f"[db] engine ready pool_size={settings.db_pool_size} max_overflow={settings.db_max_overflow}")


async def ping_db() -> None:
    """SELECT 1, so startup fails loudly when Postgres is unreachable."""
    async with get_session() as session:
        await session.execute(text("SELECT 1"))


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on clean exit and rolls back on error.

    Usage:
        async with get_session() as session:
            await session.execute(stmt)
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
