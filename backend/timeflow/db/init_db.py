"""
Database initialization and bootstrapping.
"""

from timeflow.db.base import Base
from timeflow.db import session as db_session
from timeflow.core.logging import get_logger

# Registers every model with Base.metadata
import timeflow.models  # noqa: F401

logger = get_logger(__name__)


async def create_tables(engine=None) -> None:
    """
    Create all database tables on the given engine (the application engine by default).
    Production deployments manage the schema with migrations instead.
    """
    if engine is None:
        if db_session.engine is None:
            db_session.create_engine()
        engine = db_session.engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized", extra={"tables": sorted(Base.metadata.tables)})
