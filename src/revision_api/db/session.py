from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from revision_api.config.settings import Settings, get_settings

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Return the singleton async engine."""

    global _engine, _sessionmaker

    if _engine is not None:
        return _engine

    settings = settings or get_settings()
    _engine = _create_engine(settings)
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def _create_engine(settings: Settings) -> AsyncEngine:
    if make_url(settings.database_url).get_backend_name() == "sqlite":
        return create_async_engine(settings.database_url, echo=settings.db_echo)
    return create_async_engine(
        settings.database_url,
        echo=settings.db_echo,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )


def get_sessionmaker(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    """Return the async sessionmaker, initialising it if necessary."""

    global _sessionmaker
    if _sessionmaker is None:
        get_engine(settings)
        assert _sessionmaker is not None  # For type-checkers
    return _sessionmaker


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency exposing the sessionmaker for work that opens parallel sessions."""

    return get_sessionmaker()


@asynccontextmanager
async def lifespan_context() -> AsyncIterator[None]:
    """Gracefully dispose engine during FastAPI lifespan events."""

    try:
        yield
    finally:
        if _engine is not None:
            await _engine.dispose()


__all__ = [
    "get_engine",
    "get_session_factory",
    "get_sessionmaker",
    "lifespan_context",
]
