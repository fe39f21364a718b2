"""Database connection and session management.

Uses lazy initialization so the engine is created inside the running event
loop, avoiding asyncpg/aiosqlite event loop mismatches.
"""

from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from carealert.config import settings

_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _enable_sqlite_concurrency(engine: AsyncEngine) -> None:
    """Let concurrent short transactions queue instead of failing.

    WAL keeps readers from blocking the single writer, and the busy
    timeout makes a second writer wait for the first to commit.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, testing: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``.

    NullPool is used for SQLite and in testing so connections never cross
    event loops.
    """
    echo = settings.log_format == "text" and settings.log_level.upper() == "DEBUG"
    if testing or _is_sqlite(url):
        engine = create_async_engine(url, echo=echo, poolclass=NullPool)
    else:
        engine = create_async_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )
    if _is_sqlite(url):
        _enable_sqlite_concurrency(engine)
    return engine


def get_engine() -> AsyncEngine:
    """Get or create the process-wide database engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, testing=settings.testing)
    return _engine


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the process-wide session maker."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = build_session_maker(get_engine())
    return _async_session_maker


async def create_all(engine: AsyncEngine) -> None:
    """Create every table from model metadata (tests and local development)."""
    from carealert.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Dispose the engine and all pooled connections."""
    global _engine, _async_session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None
