"""Bound, transactional lock objects for host code."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from lockledger.locking.coordinator import LockCoordinator
from lockledger.locking.executor import TransactionExecutor
from lockledger.locking.handle import LockHandle


class LockingStrategy(ABC):
    """Exclusive lock with no ordering guarantee among waiters."""

    @abstractmethod
    async def acquire(self) -> bool:
        """Attempt to take the lock. False means "busy, try later"."""
        ...

    @abstractmethod
    async def release(self) -> None:
        """Release the lock; raises if the caller does not hold it."""
        ...


class TransactionalLock(LockingStrategy):
    """A ``LockHandle`` whose operations each run in their own transaction.

    Usage:
        lock = TransactionalLock(handle, coordinator, executor)
        if await lock.acquire():
            try:
                ...
            finally:
                await lock.release()
    """

    def __init__(
        self,
        handle: LockHandle,
        coordinator: LockCoordinator,
        executor: TransactionExecutor,
    ) -> None:
        self._handle = handle
        self._coordinator = coordinator
        self._executor = executor

    @property
    def handle(self) -> LockHandle:
        return self._handle

    async def acquire(self) -> bool:
        return await self._executor.run(
            lambda db: self._coordinator.acquire(db, self._handle)
        )

    async def release(self) -> None:
        await self._executor.run(
            lambda db: self._coordinator.release(db, self._handle)
        )

    async def owner(self) -> str | None:
        """Currently recorded owner of this lock name (diagnostic)."""
        return await self._executor.run(
            lambda db: self._coordinator.get_owner(db, self._handle.name)
        )

    @asynccontextmanager
    async def held(self) -> AsyncIterator[bool]:
        """Try to acquire for the duration of the block.

        Usage:
            async with lock.held() as acquired:
                if acquired:
                    ...

        Yields:
            True if acquired. Release happens on exit only in that case.
        """
        acquired = await self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                await self.release()

    def __repr__(self) -> str:
        return (
            f"TransactionalLock(name={self._handle.name!r}, "
            f"identity={self._handle.identity!r})"
        )
