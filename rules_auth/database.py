"""Async engine and session handling for the auth tables.

Production runs on Postgres through asyncpg; tests and local development
use SQLite through aiosqlite. The engine is created on first use so that
importing models never requires a configured environment.
"""

import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base of every auth model."""


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, echo: bool = False, **options: Any) -> AsyncEngine:
    """Create an async engine with backend-specific defaults.

    Args:
        database_url: SQLAlchemy URL with an async driver
        echo: Log every SQL statement
        **options: Extra ``create_async_engine`` arguments; these win over
            the defaults

    Returns:
        AsyncEngine
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # aiosqlite hands the connection to a worker thread
        options.setdefault("connect_args", {"check_same_thread": False})
    else:
        options.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=echo, **options)


def get_engine() -> AsyncEngine:
    """Engine for the configured database, created on first call."""
    global _engine
    if _engine is None:
        # Deferred to keep model imports free of settings
        from rules_auth.config import get_settings

        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.database_echo)
        logger.info(f"Database engine created for {_engine.url.get_backend_name()}")
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``get_engine()``.

    Objects stay usable after commit; handlers return them after the
    transaction is closed.
    """
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_maker


async def create_db_and_tables() -> None:
    """Create missing tables. Deployed databases are migrated with Alembic."""
    import rules_auth.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_maker = None


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one request.

    Yields:
        AsyncSession: Database session, closed when the request ends
    """
    async with get_session_maker()() as session:
        yield session
