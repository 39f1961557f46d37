"""
Database Connection Module
Handles the PostgreSQL connection using the SQLAlchemy async engine.

The engine is built lazily so processes running on the in-memory store
(development, tests) never need a database driver at import time.
"""

import logging
from functools import lru_cache
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, **engine_kwargs: Any) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Celery tasks call this with poolclass=NullPool because every task
    runs on its own event loop and pooled connections cannot cross loops.
    """
    settings = get_settings()
    engine_kwargs.setdefault("echo", settings.database_echo)
    return create_async_engine(database_url, **engine_kwargs)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory - creates new database sessions."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Objects remain accessible after commit
    )


@lru_cache()
def get_engine() -> AsyncEngine:
    """Process-wide engine for the API server."""
    settings = get_settings()
    return build_engine(
        settings.database_url,
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
    )


@lru_cache()
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Process-wide session factory bound to get_engine()."""
    return build_session_maker(get_engine())


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register models on Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅ Database tables created successfully!")


async def dispose_db() -> None:
    """Dispose the process-wide engine if it was ever created."""
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
        get_engine.cache_clear()
        get_session_maker.cache_clear()
