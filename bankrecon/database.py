"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from bankrecon.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def _engine_options(url: str) -> dict[str, Any]:
    # SQLite (local runs) does not accept pool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,  # Max persistent connections
        "max_overflow": 20,  # Additional transient connections under load
        "pool_recycle": 3600,  # Recycle connections after 1 hour
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Test hook to override session maker
_test_session_maker = None


def set_test_session_maker(
    maker: async_sessionmaker[AsyncSession] | None,
) -> async_sessionmaker[AsyncSession] | None:
    """Set test session maker and return the previous value.

    Args:
        maker: New session maker to use for tests, or None to clear

    Returns:
        Previous session maker value
    """
    global _test_session_maker
    previous = _test_session_maker
    _test_session_maker = maker
    return previous


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for database session."""
    maker = _test_session_maker or async_session_maker
    async with maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    """Create tables that do not exist yet."""
    from bankrecon.logger import get_logger
    from bankrecon import models  # noqa: F401

    logger = get_logger(__name__)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized", tables=sorted(Base.metadata.tables))
