"""Database engine and session management using SQLModel async."""

from __future__ import annotations

import structlog
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Import all models to ensure they are registered with SQLModel metadata
import lockledger.models  # noqa: F401
from lockledger.config import get_settings

logger = structlog.get_logger()

# Lazy initialization - engine created on first use
_engine: AsyncEngine | None = None
_async_session_factory = None


def _install_sqlite_immediate_begin(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite's implicit (deferred) BEGIN lets two transactions read the same
    ledger row and then race to upgrade their locks, which SQLite resolves by
    failing one of them with "database is locked". BEGIN IMMEDIATE instead
    serializes them: the second waits (up to the busy timeout) and then reads
    the committed result of the first.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # disable the driver's own BEGIN handling entirely
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(
    url: str,
    *,
    echo: bool = False,
    busy_timeout_seconds: float = 30.0,
) -> AsyncEngine:
    """Create an async engine suitable for the lock ledger.

    Args:
        url: SQLAlchemy async database URL
        echo: Log emitted SQL
        busy_timeout_seconds: SQLite only, wait time for a contended write lock

    Returns:
        Configured AsyncEngine
    """
    backend = make_url(url).get_backend_name()

    if backend == "sqlite":
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": busy_timeout_seconds},
        )
        _install_sqlite_immediate_begin(engine)
    else:
        engine = create_async_engine(url, echo=echo, pool_pre_ping=True)

    logger.debug("db.engine.created", backend=backend)
    return engine


def make_session_factory(engine: AsyncEngine):
    """Build a session factory bound to ``engine``."""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for(
            settings.database.url,
            echo=settings.database.echo,
            busy_timeout_seconds=settings.database.busy_timeout_seconds,
        )
    return _engine


def get_session_factory():
    """Get or create the async session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = make_session_factory(get_engine())
    return _async_session_factory


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the ledger table if it does not exist.

    Note: In production, manage the schema with migrations instead.
    This is for development/testing convenience.
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def close_db() -> None:
    """Close database connection."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None

