"""ETDS Database module.

Database models and migrations:
- SQLAlchemy 2.x ORM models (applications, agency remarks, audit log)
- Alembic migration configuration
- Async engine and session factory over psycopg
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from etds.core.config import Settings

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_async_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the async psycopg driver.

    Args:
        url: Database URL as configured (postgresql:// or postgres://).

    Returns:
        URL with the postgresql+psycopg scheme.
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def init_engine(settings: Settings | None = None) -> None:
    """Initialize the database engine and session factory.

    Safe to call more than once; only the first call creates the engine.

    Args:
        settings: Settings to use. Defaults to the cached application settings.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        return

    if settings is None:
        from etds.core.settings import get_settings

        settings = get_settings()

    _engine = create_async_engine(
        to_async_url(str(settings.database.url)),
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
        echo=settings.database.echo,
    )

    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session.

    Rolls back on any exception; the caller commits explicitly.

    Usage:
        async with get_async_session() as session:
            service = DecisionService(session, ...)
            await service.decide(...)
            await session.commit()

    Yields:
        AsyncSession for database operations.
    """
    init_engine()

    if _async_session_factory is None:
        msg = "Database session factory not initialized"
        raise RuntimeError(msg)

    session = _async_session_factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_engine() -> None:
    """Close the database engine.

    Call this during application shutdown to clean up connections.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
