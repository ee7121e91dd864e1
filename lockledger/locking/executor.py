"""Transaction boundary for lock operations.

Every acquire/release is one unit of work: a callable taking a session
that is already inside a transaction. The executor commits before
returning, so the outcome is durably visible to other contenders.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lockledger.errors import LockStorageError

logger = structlog.get_logger()

T = TypeVar("T")

UnitOfWork = Callable[[AsyncSession], Awaitable[T]]


class TransactionExecutor(ABC):
    """Runs a unit of work with all-or-nothing visibility."""

    @abstractmethod
    async def run(self, work: UnitOfWork[T]) -> T:
        """Execute ``work`` in a fresh transaction and commit it.

        Raises:
            LockStorageError: If the transaction itself fails
        """
        ...


class SessionTransactionExecutor(TransactionExecutor):
    """Executor backed by a SQLAlchemy async session factory.

    Each call gets its own session (and therefore its own connection), so
    concurrent calls in one process behave like independent contenders.
    """

    def __init__(self, session_factory, log: structlog.stdlib.BoundLogger | None = None):
        self._session_factory = session_factory
        self._log = log if log is not None else logger.bind(service="lock_executor")

    async def run(self, work: UnitOfWork[T]) -> T:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await work(session)
                    # Force pending writes out before commit
                    await session.flush()
        except SQLAlchemyError as e:
            self._log.warning(
                "lock.tx.failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise LockStorageError(
                f"Ledger transaction failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e
        return result
