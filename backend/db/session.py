"""
Async database session management.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import settings

async_engine = create_async_engine(
    settings.ASYNC_DATABASE_URL,
    echo=False,
    poolclass=NullPool,
)

# Create async session factory
async_session_maker = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

_db_semaphore = asyncio.Semaphore(settings.DB_MAX_CONCURRENCY)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Read-only session for one query.
    Uses a semaphore to bound the number of simultaneous connections.
    """
    async with _db_semaphore:
        async with async_session_maker() as session:
            yield session
