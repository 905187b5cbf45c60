"""
Database session management with async SQLAlchemy 2.0.
Owns the process-wide engine and sessionmaker and the request session dependency.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from typing import AsyncGenerator

from timeflow.core.config import settings
from timeflow.core.logging import get_logger

logger = get_logger(__name__)

# Global engine and sessionmaker
engine = None
async_session_maker: async_sessionmaker[AsyncSession] = None


def _engine_options(database_url: str) -> dict:
    """Pool options for the configured backend; SQLite uses its own pool and takes no sizing."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


def create_engine():
    """Create the async engine for DATABASE_URL."""
    global engine

    options = _engine_options(settings.DATABASE_URL)
    engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO, **options)

    logger.info(
        "Database engine created",
        extra={
            "backend": make_url(settings.DATABASE_URL).get_backend_name(),
            "pool_size": options.get("pool_size"),
            "max_overflow": options.get("max_overflow"),
        },
    )
    return engine


def create_sessionmaker():
    """Create async sessionmaker. Loaded objects stay usable after commit."""
    global async_session_maker

    if engine is None:
        create_engine()

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session dependency.
    Commits what the request left pending; any error rolls the request back.
    """
    if async_session_maker is None:
        create_sessionmaker()

    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    if async_session_maker is None:
        create_sessionmaker()
    logger.info("Database initialized")


async def close_db() -> None:
    """Dispose the engine and forget the sessionmaker bound to it."""
    global engine, async_session_maker

    if engine:
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")
