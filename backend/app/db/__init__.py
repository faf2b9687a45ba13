import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.db.session import engine

logger = logging.getLogger(__name__)


async def init_models(bind: AsyncEngine = engine, drop: bool = False) -> None:
    """Create every table known to the ORM metadata."""
    # Models must be imported so their tables are registered on Base.metadata
    from backend.app import models  # noqa: F401
    from backend.app.db.base import Base

    try:
        async with bind.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready")
    except Exception:
        logger.exception("Could not create database tables")
        raise
