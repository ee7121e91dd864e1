"""Shared fixtures: a file-backed SQLite ledger per test.

A file (not ``:memory:``) is used so that every session gets its own
connection; in-memory SQLite shares one connection across the pool and
would hide the concurrency being tested.
"""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from lockledger.db.session import create_engine_for, init_db, make_session_factory
from lockledger.locking import LockCoordinator, LockService, SessionTransactionExecutor

DEFAULT_TTL = "PT1H"


@pytest.fixture
def ledger_url(tmp_path) -> str:
    """URL of an empty SQLite ledger file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
async def engine(ledger_url: str):
    """Engine with the ledger table created."""
    engine = create_engine_for(ledger_url, busy_timeout_seconds=30)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return make_session_factory(engine)


@pytest.fixture
def executor(session_factory) -> SessionTransactionExecutor:
    return SessionTransactionExecutor(session_factory)


@pytest.fixture
def coordinator() -> LockCoordinator:
    return LockCoordinator()


@pytest.fixture
def service(executor, coordinator) -> LockService:
    return LockService(executor, coordinator, default_lease=DEFAULT_TTL)
