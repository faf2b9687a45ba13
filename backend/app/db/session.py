# backend/app/db/session.py
"""
Async database session management for SQLAlchemy.

Production considerations:
- Uses asyncpg for PostgreSQL (production)
- Uses aiosqlite for SQLite (local development and tests)
- Pool settings differ for SQLite (no pooling) vs PostgreSQL

Concurrency considerations:
- Every service call runs its writes inside one transaction on the session
  it is handed; row-level atomicity (counter CAS, version increments) is
  expressed in SQL, never as read-then-write in Python
- SQLite serialises writers; `timeout` makes a second writer wait for the
  lock instead of failing immediately
"""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool

from backend.app.core.config import settings


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create and configure an async SQLAlchemy engine for the given URL.

    SQLite:
    - NullPool (a fresh connection per session)
    - check_same_thread=False for async compatibility
    - timeout bounds how long a writer waits for the database lock

    PostgreSQL:
    - AsyncAdaptedQueuePool with pre-ping and recycling
    """
    if "sqlite" in url.lower():
        return create_async_engine(
            url,
            echo=echo,
            poolclass=NullPool,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.DB_OPERATION_TIMEOUT_SECONDS,
            },
        )

    return create_async_engine(
        url,
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_timeout=settings.DB_OPERATION_TIMEOUT_SECONDS,
    )


def create_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to an engine.

    expire_on_commit=False: ORM objects stay readable after commit
    autoflush=False: explicit flush control, no surprise queries
    """
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Global async engine and session factory
# Created once at module load, reused across all requests
# ─────────────────────────────────────────────────────────────────────────────
engine: AsyncEngine = create_engine_for_url(settings.DATABASE_URL, settings.DATABASE_ECHO)

AsyncSessionLocal: async_sessionmaker[AsyncSession] = create_sessionmaker(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency generator for database sessions.

    Usage in FastAPI endpoints:
        @router.get("/manifest")
        async def manifest(db: AsyncSession = Depends(get_db)):
            ...

    Note: This does NOT auto-commit. Services commit their own
    transactions (see db.retry.with_retry).
    """
    async with AsyncSessionLocal() as session:
        yield session
