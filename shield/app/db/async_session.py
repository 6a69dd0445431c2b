"""Async database session management for SQLAlchemy 2.0+.

The engine and session maker are built once in the application lifespan
and passed to the services that need them; nothing here is cached at
module level.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from shield.app.core.config import Settings, settings as default_settings
from shield.app.core.logging import get_logger
from shield.app.db.base import Base

logger = get_logger(__name__)


def build_async_engine(config: Optional[Settings] = None) -> AsyncEngine:
    """Create the async database engine for the ledger tables.

    PostgreSQL (asyncpg) gets a sized connection pool; SQLite (aiosqlite,
    used in tests) keeps the driver defaults.

    Args:
        config: Settings to read the database URL and pool sizes from.

    Returns:
        AsyncEngine instance
    """
    config = config or default_settings
    url = config.database_url

    if "sqlite" in url.lower():
        engine = create_async_engine(url, echo=False)
        logger.info("Created SQLite async engine")
        return engine

    engine = create_async_engine(
        url,
        echo=False,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
        pool_timeout=config.db_pool_timeout,
        pool_recycle=config.db_pool_recycle,
        pool_pre_ping=config.db_pool_pre_ping,
    )
    logger.info(
        f"Created PostgreSQL async engine (pool_size={config.db_pool_size}, "
        f"max_overflow={config.db_max_overflow})"
    )
    return engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Get a session maker bound to engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional scope: commit on success, roll back on error.

    Usage:
        async with session_scope(session_maker) as session:
            session.add(row)
    """
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_models(engine: AsyncEngine) -> None:
    """Create the ledger tables if they do not exist."""
    from shield.app.db import models  # noqa: F401 - import to register models

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def verify_connection(engine: AsyncEngine) -> bool:
    """Run a trivial query to check the database answers."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
