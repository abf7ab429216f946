"""
Async database connection management.

Exposes the shared SQLAlchemy async engine and ``get_async_session()``, the
single way application code opens a unit of work:

    async with get_async_session() as session:
        ...
        await session.commit()
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
)

# expire_on_commit=False keeps ORM objects readable after the session closes
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield an AsyncSession and roll back on error.

    Callers commit explicitly; anything left uncommitted when the block exits
    normally is discarded when the session closes.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
