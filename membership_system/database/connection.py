"""Database connection and session management."""
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Request
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from membership_system.config import Settings, get_settings
from membership_system.database.models import Base

# Process-wide engine for the CLI; the API keeps its own on app.state
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Build an async engine for the given settings.

    No connection is opened until the engine is first used.
    """
    engine_kwargs: dict[str, Any] = {"echo": settings.database_echo}
    if make_url(settings.database_url).get_backend_name() != "sqlite":
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    return create_async_engine(settings.database_url, **engine_kwargs)


def get_engine() -> AsyncEngine:
    """
    Get or create the process-wide database engine.

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory configured the way every service expects."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the process-wide session factory.

    Returns:
        async_sessionmaker: SQLAlchemy async session factory
    """
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = build_session_factory(get_engine())
    return _async_session_factory


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, Any]:
    """
    Dependency for getting database sessions.

    Sessions come from the factory the application was built with.
    Services commit their own units of work; anything left open when the
    request finishes is committed here.

    Yields:
        AsyncSession: Database session
    """
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize database tables.

    Creates all tables defined in models if they don't exist.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close the process-wide engine's connections and forget it."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
