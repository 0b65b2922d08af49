"""
Async engine, session factory and transaction helpers
"""

from typing import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from app.config import settings

logger = logging.getLogger(__name__)


def _build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        # One connection per session; writers wait on the file lock instead of failing
        return create_async_engine(
            url,
            echo=settings.DB_ECHO,
            poolclass=NullPool,
            connect_args={"timeout": settings.DB_POOL_TIMEOUT},
        )
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


engine: AsyncEngine = _build_engine(settings.DATABASE_URL)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def init_db():
    """
    Create missing waitlist tables and indexes
    """
    # Register every mapped table on Base.metadata
    import app.models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(f"Database schema check failed: {e}")
        raise
    logger.info(f"Database ready ({len(Base.metadata.tables)} tables)")


async def close_db():
    await engine.dispose()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Unit-of-work helpers for the waitlist service.

    Every state change runs in its own short transaction so a conditional
    UPDATE and its rowcount check commit or roll back together.
    """

    def __init__(self, session_factory: async_sessionmaker = async_session):
        self.session_factory = session_factory

    @asynccontextmanager
    async def atomic_transaction(self):
        """
        Fresh session inside BEGIN ... COMMIT; any exception rolls back
        and propagates.
        """
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except Exception as e:
                logger.debug(f"Transaction rolled back: {type(e).__name__}: {e}")
                raise

    @asynccontextmanager
    async def read_session(self):
        async with self.session_factory() as session:
            yield session


db_manager = DatabaseManager()
