"""Async SQLAlchemy engine, session factory and declarative base."""
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from invoicing.config import settings


def _engine_options(database_url: str) -> dict[str, Any]:
    # SQLite drivers reject QueuePool sizing arguments
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
    }


engine = create_async_engine(settings.database_url, echo=settings.debug, **_engine_options(settings.database_url))

# Objects stay readable after commit; services re-read totals after every write
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a session for one request.

    Services commit their own units of work, so the dependency only
    rolls back whatever a failed request left pending.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


Base = declarative_base()
