"""Async SQLAlchemy engine and session factory for PostgreSQL.

Room actors are long-lived, so they do not share a request-scoped session:
the storage services open a short session from ``async_session_factory``
for every operation and translate driver errors into PersistenceError.
"""

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


engine: AsyncEngine = create_async_engine(
    settings.postgres_url,
    echo=False,
    pool_size=20,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def close_postgres() -> None:
    """Gracefully dispose of the async engine connection pool."""
    logger.info("postgres_shutdown")
    await engine.dispose()
