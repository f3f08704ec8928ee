"""
Database engine and sessions

One async engine per process. Request handlers get a session through the
get_db dependency; the hold store, catalog, account lookups and the hold
sweeper open their own with get_db_session. Both commit on success and roll
back on any exception.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from destiine.core.config import settings


def engine_options(config) -> Dict[str, object]:
    """Pool sizing: configured in production, small everywhere else."""
    if config.ENVIRONMENT == "production":
        return {
            "pool_size": config.DB_POOL_SIZE,
            "max_overflow": config.DB_MAX_OVERFLOW,
            "pool_recycle": config.DB_POOL_RECYCLE,
            "pool_pre_ping": True,
        }
    return {"pool_size": 2, "max_overflow": 5, "pool_pre_ping": True}


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, **engine_options(settings))

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """
    Transactional session outside the request cycle.

        async with get_db_session() as db:
            await db.execute(...)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one transactional session per request."""
    async with get_db_session() as session:
        yield session
