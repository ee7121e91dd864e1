"""Lock acquisition and release against the ledger table.

The coordinator only issues reads and writes. It must be called with a
session that is already inside a transaction (see ``TransactionExecutor``);
that transaction is what makes the read-decide-write sequence atomic.

Row-level serialization:
- PostgreSQL/MySQL: ``SELECT ... FOR UPDATE`` blocks concurrent contenders
  on an existing row until the holder's transaction commits.
- A missing row is inserted inside a SAVEPOINT; if another contender
  inserted it first the unique key rejects ours and we re-read the
  (now committed) row under lock.
- SQLite: FOR UPDATE is not rendered; ``BEGIN IMMEDIATE`` (installed by
  ``create_engine_for``) serializes whole transactions instead.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from lockledger.db.clock import database_now
from lockledger.errors import OwnershipViolationError
from lockledger.locking.handle import LockHandle
from lockledger.models.lock import LockEntry

logger = structlog.get_logger()


class LockCoordinator:
    """Exclusive, non-reentrant, steal-on-expiry lock algorithm.

    State per lock name:
        UNLOCKED -> HELD(owner, expiry)            acquire
        HELD -> UNLOCKED                           release by owner
        HELD -> EXPIRED(owner, expiry)             lease elapses
        EXPIRED -> HELD(new owner, new expiry)     acquire by anyone

    EXPIRED behaves like UNLOCKED for acquisition, but ``get_owner`` keeps
    reporting the stale owner until the next acquire overwrites it.
    """

    def __init__(self, log: structlog.stdlib.BoundLogger | None = None) -> None:
        """Initialize coordinator.

        Args:
            log: Event sink for lock decisions (default: module logger)
        """
        self._log = log if log is not None else logger.bind(service="lock_coordinator")

    async def _load_for_update(self, db: AsyncSession, name: str) -> LockEntry | None:
        query = (
            select(LockEntry)
            .where(LockEntry.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalars().first()

    async def _insert_entry(
        self, db: AsyncSession, handle: LockHandle, now: datetime
    ) -> bool:
        """Insert a fresh held row. Returns False if the name already exists."""
        try:
            async with db.begin_nested():
                db.add(
                    LockEntry(
                        name=handle.name,
                        owner=handle.identity,
                        expires_at=now + handle.lease,
                    )
                )
        except IntegrityError:
            self._log.debug("lock.acquire.insert_conflict", lock=handle.name)
            return False
        return True

    async def acquire(self, db: AsyncSession, handle: LockHandle) -> bool:
        """Try to take the lock for ``handle.identity``.

        Returns:
            True if the caller now holds the lock; False if it is held by
            anyone (including the caller itself) and the lease is still live.
        """
        entry = await self._load_for_update(db, handle.name)
        now = await database_now(db)

        if entry is None:
            if await self._insert_entry(db, handle, now):
                self._log.info(
                    "lock.acquire.granted",
                    lock=handle.name,
                    owner=handle.identity,
                    expires_at=(now + handle.lease).isoformat(),
                )
                return True
            # Lost the insert race; the winner's row is committed by now
            entry = await self._load_for_update(db, handle.name)
            now = await database_now(db)
            if entry is None:
                # Row vanished between conflict and re-read; only possible
                # if something outside the coordinator deletes ledger rows.
                self._log.warning("lock.acquire.row_vanished", lock=handle.name)
                return False

        if entry.is_held_at(now):
            self._log.debug(
                "lock.acquire.denied",
                lock=handle.name,
                requester=handle.identity,
                owner=entry.owner,
                expires_at=entry.expires_at.isoformat(),
            )
            return False

        previous_owner = entry.owner
        entry.owner = handle.identity
        entry.expires_at = now + handle.lease
        db.add(entry)
        await db.flush()

        self._log.info(
            "lock.acquire.granted",
            lock=handle.name,
            owner=handle.identity,
            expires_at=entry.expires_at.isoformat(),
            stolen_from=previous_owner,
        )
        return True

    async def release(self, db: AsyncSession, handle: LockHandle) -> None:
        """Release the lock held by ``handle.identity``.

        Ownership is checked by identity only; an owner may release even
        after its lease has elapsed, as long as nobody has stolen it yet.

        Raises:
            OwnershipViolationError: If the lock is unlocked or held by
                another identity
        """
        entry = await self._load_for_update(db, handle.name)

        if entry is None or entry.owner != handle.identity:
            owner = entry.owner if entry is not None else None
            self._log.warning(
                "lock.release.violation",
                lock=handle.name,
                requester=handle.identity,
                owner=owner,
            )
            raise OwnershipViolationError(
                f"Lock {handle.name!r} is not held by {handle.identity!r}",
                details={
                    "lock": handle.name,
                    "requester": handle.identity,
                    "owner": owner,
                },
            )

        entry.owner = None
        entry.expires_at = None
        db.add(entry)
        await db.flush()

        self._log.info("lock.release.done", lock=handle.name, owner=handle.identity)

    async def get_owner(self, db: AsyncSession, name: str) -> str | None:
        """Point-in-time read of the recorded owner (may be expired)."""
        result = await db.execute(select(LockEntry.owner).where(LockEntry.name == name))
        return result.scalars().first()
