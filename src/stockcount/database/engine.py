"""Database engine and session management."""

import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..config import settings
from .models import Base

logger = logging.getLogger(__name__)

engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def init_db() -> None:
    """Create all tables defined in the Base metadata.

    Called on application startup; production schemas are managed by Alembic.
    """
    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized successfully")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session, rolling back on any error.

    Example:
        async for session in get_session():
            count = await get_cycle_count(session, 1)
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:  # Intentionally broad: must rollback on any error during session use
            await session.rollback()
            raise
        finally:
            await session.close()


async def close_db() -> None:
    """Dispose the engine and all pooled connections."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed")
