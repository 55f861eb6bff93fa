"""Async SQLAlchemy engine and session management.

The leave workflow opens its own transactions from ``async_session_factory``;
``get_db`` serves the read-only lookups done by request dependencies.
"""

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from hr_records.config import settings


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool settings for ``create_async_engine``; SQLite has no sized pool."""
    options: dict[str, Any] = {
        "echo": settings.ENVIRONMENT == "development",
        "pool_pre_ping": True,
    }
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

# Objects stay readable after commit; responses are built from them
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield a session for read-only lookups."""
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
