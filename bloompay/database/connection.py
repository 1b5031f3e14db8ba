"""Database engine and session management."""
from typing import Any, Dict

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from tenacity import retry, stop_after_attempt, wait_exponential

from bloompay.config import Settings
from bloompay.database.models import Base

logger = structlog.get_logger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the database engine for the configured URL.

    SQLite gets a NullPool so that every session owns its own connection;
    SQLite then serializes writers through its file lock, and a writer waits
    up to the busy timeout for that lock.

    Args:
        settings: Application settings

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    kwargs: Dict[str, Any] = {"echo": settings.database_echo}
    if settings.is_sqlite:
        kwargs["poolclass"] = NullPool
        kwargs["connect_args"] = {"timeout": settings.database_busy_timeout_seconds}
    else:
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create the session factory bound to an engine.

    Returns:
        async_sessionmaker: SQLAlchemy async session factory
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)
async def init_db(engine: AsyncEngine) -> None:
    """
    Initialize database tables.

    Creates all tables defined in models if they don't exist. Retried with
    backoff because the database container often starts after the API.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_tables_ready")


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections and dispose of the engine."""
    await engine.dispose()
