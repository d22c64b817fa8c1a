"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pueue.config import get_settings
from pueue.errors import PersistenceError
from pueue.observability.tracing import instrument_sqlalchemy

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db() -> None:
    """
    Initialize the database connection and session factory.
    Should be called on application startup.
    """
    global AsyncSessionLocal
    engine = get_engine()
    AsyncSessionLocal = create_session_factory(engine)

    if get_settings().otel_enabled:
        instrument_sqlalchemy(engine.sync_engine)

    logger.info("Database connection initialized")


async def close_db() -> None:
    """
    Close the database connection.
    Should be called on application shutdown.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None
        logger.info("Database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get the session factory created by init_db().

    Raises:
        RuntimeError: If the database is not initialized.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return AsyncSessionLocal


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Dependency for getting async database sessions.

    Yields:
        AsyncSession: An async database session.

    Raises:
        RuntimeError: If the database is not initialized.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await commit_or_raise(session)
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession]:
    """
    Context manager for getting async database sessions.
    Useful for non-FastAPI contexts like producers and workers.

    Commits on success and rolls back on error. Commit and rollback
    failures are raised as PersistenceError.

    Yields:
        AsyncSession: An async database session.
    """
    factory = session_factory or get_session_factory()

    async with factory() as session:
        try:
            yield session
        except Exception:
            await rollback_quietly(session)
            raise
        await commit_or_raise(session)


async def commit_or_raise(session: AsyncSession) -> None:
    """
    Commit the session, rolling back and raising PersistenceError on failure.
    """
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise PersistenceError(f"Could not commit transaction: {e}") from e


async def rollback_quietly(session: AsyncSession) -> None:
    """Roll back, logging instead of raising if the rollback itself fails."""
    try:
        await session.rollback()
    except SQLAlchemyError:
        logger.exception("Could not roll back transaction")
