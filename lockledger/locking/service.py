"""Host-facing lock API.

Usage:
    service = LockService.from_settings(get_settings())
    if await service.acquire("ticket-cleanup", "node-a", "PT5M"):
        try:
            ...
        finally:
            await service.release("ticket-cleanup", "node-a")
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine

from lockledger.config import Settings, get_settings
from lockledger.db.session import (
    create_engine_for,
    get_session_factory,
    make_session_factory,
)
from lockledger.locking.coordinator import LockCoordinator
from lockledger.locking.executor import SessionTransactionExecutor, TransactionExecutor
from lockledger.locking.handle import LockHandle
from lockledger.locking.strategy import TransactionalLock
from lockledger.utils.duration import parse_duration


class LockService:
    """acquire / release / get_owner by lock name and identity."""

    def __init__(
        self,
        executor: TransactionExecutor,
        coordinator: LockCoordinator | None = None,
        default_lease: timedelta | int | float | str = timedelta(hours=1),
    ) -> None:
        self._executor = executor
        self._coordinator = coordinator or LockCoordinator()
        self._default_lease = parse_duration(default_lease)
        # Set only when this service created the engine itself
        self._engine: AsyncEngine | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> LockService:
        """Wire a service to its own engine built from ``settings``."""
        engine = create_engine_for(
            settings.database.url,
            echo=settings.database.echo,
            busy_timeout_seconds=settings.database.busy_timeout_seconds,
        )
        executor = SessionTransactionExecutor(make_session_factory(engine))
        service = cls(executor, default_lease=settings.lock.default_lease)
        service._engine = engine
        return service

    @classmethod
    def default(cls) -> LockService:
        """Service on the process-wide engine from ``get_settings()``.

        The engine is shared, so ``close()`` leaves it alone; use
        ``lockledger.db.close_db()`` at shutdown.
        """
        settings = get_settings()
        executor = SessionTransactionExecutor(get_session_factory())
        return cls(executor, default_lease=settings.lock.default_lease)

    async def close(self) -> None:
        """Dispose the engine created by ``from_settings`` (no-op otherwise)."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    @property
    def engine(self) -> AsyncEngine | None:
        """Engine owned by this service, if built by ``from_settings``."""
        return self._engine

    @property
    def default_lease(self) -> timedelta:
        return self._default_lease

    def lock(
        self,
        name: str,
        identity: str,
        lease_duration: timedelta | int | float | str | None = None,
    ) -> TransactionalLock:
        """Build a reusable lock object for one contender."""
        handle = LockHandle(
            name=name,
            identity=identity,
            lease=lease_duration if lease_duration is not None else self._default_lease,
        )
        return TransactionalLock(handle, self._coordinator, self._executor)

    async def acquire(
        self,
        name: str,
        identity: str,
        lease_duration: timedelta | int | float | str | None = None,
    ) -> bool:
        """Try to take ``name`` for ``identity``. False if it is held."""
        return await self.lock(name, identity, lease_duration).acquire()

    async def release(self, name: str, identity: str) -> None:
        """Release ``name``.

        Raises:
            OwnershipViolationError: If ``identity`` does not hold it
        """
        await self.lock(name, identity).release()

    async def get_owner(self, name: str) -> str | None:
        """Recorded owner of ``name``, or None if unlocked or never used."""
        return await self._executor.run(
            lambda db: self._coordinator.get_owner(db, name)
        )
