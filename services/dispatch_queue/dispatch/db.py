"""Database engine and session utilities for async SQLAlchemy.

All components share a single, lazily initialized async engine. ``postgres://``
and ``postgresql://`` URLs are normalized for the ``asyncpg`` driver.

Example:
    >>> from dispatch.db import get_session
    >>> async with get_session() as session:
    ...     await session.execute(text("SELECT 1"))
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # type: ignore

from dispatch.config import Settings


_engine: Any = None
_session_factory: Any = None


def normalize_database_url(url: str) -> str:
    """Return ``url`` with the ``postgresql+asyncpg://`` scheme.

    >>> normalize_database_url("postgres://u:p@db/dispatch")
    'postgresql+asyncpg://u:p@db/dispatch'
    """
    if url.startswith("postgresql+asyncpg://"):
        return url
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def is_database_configured(settings: Settings | None = None) -> bool:
    return bool((settings or Settings()).database_url)


def get_engine(settings: Settings | None = None) -> Any:
    """Return the process-wide async engine, creating it on first use."""
    global _engine, _session_factory
    if _engine is None:
        settings = settings or Settings()
        _engine = create_async_engine(normalize_database_url(settings.database_url), pool_pre_ping=True)
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[Any]:
    """Yield an ``AsyncSession`` bound to the shared engine."""
    global _session_factory
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    async with _session_factory() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
