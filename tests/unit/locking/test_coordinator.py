"""Unit tests for LockCoordinator.

Each operation runs inside an explicit session transaction, the way
SessionTransactionExecutor runs it, against a file-backed SQLite ledger.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from lockledger.db.clock import database_now
from lockledger.errors import OwnershipViolationError
from lockledger.locking import LockCoordinator, LockHandle
from lockledger.models import LockEntry

SHORT = timedelta(milliseconds=200)
LONG = timedelta(hours=1)


async def in_tx(session_factory, fn):
    async with session_factory() as db:
        async with db.begin():
            return await fn(db)


async def load_entry(session_factory, name: str) -> LockEntry | None:
    async with session_factory() as db:
        return await db.get(LockEntry, name)


class TestAcquire:
    async def test_fresh_lock(self, session_factory, coordinator):
        """A never-used name has no owner and can be acquired."""
        handle = LockHandle("fresh", "fresh-1", LONG)

        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "fresh")) is None
        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is True
        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "fresh")) == "fresh-1"

    async def test_expiry_uses_database_clock(self, session_factory, coordinator):
        handle = LockHandle("clock", "clock-1", LONG)

        async def acquire_and_read_now(db):
            acquired = await coordinator.acquire(db, handle)
            return acquired, await database_now(db)

        acquired, now = await in_tx(session_factory, acquire_and_read_now)
        entry = await load_entry(session_factory, "clock")

        assert acquired is True
        assert entry.expires_at - now <= LONG
        assert entry.expires_at - now > LONG - timedelta(seconds=5)

    async def test_non_reentrant(self, session_factory, coordinator):
        """The holder calling acquire again fails and does not renew."""
        handle = LockHandle("reentrant", "reentrant-1", LONG)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is True
        before = await load_entry(session_factory, "reentrant")

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is False
        after = await load_entry(session_factory, "reentrant")

        assert after.owner == "reentrant-1"
        assert after.expires_at == before.expires_at

    async def test_other_identity_denied_while_held(self, session_factory, coordinator):
        first = LockHandle("held", "held-1", LONG)
        second = LockHandle("held", "held-2", LONG)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, first)) is True
        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, second)) is False
        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "held")) == "held-1"

    async def test_expired_lease_is_stolen(self, session_factory, coordinator):
        first = LockHandle("steal", "steal-1", SHORT)
        second = LockHandle("steal", "steal-2", LONG)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, first)) is True
        await asyncio.sleep(0.4)

        with capture_logs() as logs:
            assert await in_tx(session_factory, lambda db: coordinator.acquire(db, second)) is True

        entry = await load_entry(session_factory, "steal")
        assert entry.owner == "steal-2"
        granted = [e for e in logs if e["event"] == "lock.acquire.granted"]
        assert granted and granted[0]["stolen_from"] == "steal-1"

    async def test_expired_lease_reclaimed_by_same_identity(self, session_factory, coordinator):
        handle = LockHandle("reclaim", "reclaim-1", SHORT)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is True
        first_expiry = (await load_entry(session_factory, "reclaim")).expires_at
        await asyncio.sleep(0.4)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is True
        entry = await load_entry(session_factory, "reclaim")
        assert entry.owner == "reclaim-1"
        assert entry.expires_at > first_expiry

    async def test_get_owner_reports_stale_owner(self, session_factory, coordinator):
        """An expired-but-recorded lock still reports its last owner."""
        handle = LockHandle("stale", "stale-1", SHORT)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is True
        await asyncio.sleep(0.4)

        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "stale")) == "stale-1"

    async def test_steal_decided_by_database_time(self, session_factory, coordinator, monkeypatch):
        """A lease counts as expired when the database clock says so."""
        first = LockHandle("skew", "skew-1", LONG)
        second = LockHandle("skew", "skew-2", LONG)
        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, first)) is True

        async def two_hours_later(db):
            return await database_now(db) + timedelta(hours=2)

        monkeypatch.setattr("lockledger.locking.coordinator.database_now", two_hours_later)

        assert await in_tx(session_factory, lambda db: coordinator.acquire(db, second)) is True


class TestRelease:
    async def test_release_by_owner_clears_entry(self, session_factory, coordinator):
        handle = LockHandle("basic", "basic-1", LONG)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, handle))

        await in_tx(session_factory, lambda db: coordinator.release(db, handle))

        entry = await load_entry(session_factory, "basic")
        assert entry is not None
        assert entry.owner is None
        assert entry.expires_at is None

    async def test_release_then_reacquire(self, session_factory, coordinator):
        handle = LockHandle("cycle", "cycle-1", LONG)

        for _ in range(3):
            assert await in_tx(session_factory, lambda db: coordinator.acquire(db, handle)) is True
            await in_tx(session_factory, lambda db: coordinator.release(db, handle))

        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "cycle")) is None

    async def test_release_by_other_identity(self, session_factory, coordinator):
        owner = LockHandle("guarded", "guarded-1", LONG)
        intruder = LockHandle("guarded", "guarded-2", LONG)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, owner))

        with pytest.raises(OwnershipViolationError) as exc_info:
            await in_tx(session_factory, lambda db: coordinator.release(db, intruder))

        assert exc_info.value.details == {
            "lock": "guarded",
            "requester": "guarded-2",
            "owner": "guarded-1",
        }
        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "guarded")) == "guarded-1"

    async def test_release_never_acquired(self, session_factory, coordinator):
        handle = LockHandle("ghost", "ghost-1", LONG)

        with pytest.raises(OwnershipViolationError):
            await in_tx(session_factory, lambda db: coordinator.release(db, handle))

        assert await load_entry(session_factory, "ghost") is None

    async def test_double_release(self, session_factory, coordinator):
        handle = LockHandle("twice", "twice-1", LONG)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, handle))
        await in_tx(session_factory, lambda db: coordinator.release(db, handle))

        with capture_logs() as logs:
            with pytest.raises(OwnershipViolationError):
                await in_tx(session_factory, lambda db: coordinator.release(db, handle))

        assert logs[-1]["event"] == "lock.release.violation"
        assert logs[-1]["owner"] is None

    async def test_owner_may_release_after_expiry_if_not_stolen(self, session_factory, coordinator):
        handle = LockHandle("late", "late-1", SHORT)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, handle))
        await asyncio.sleep(0.4)

        await in_tx(session_factory, lambda db: coordinator.release(db, handle))

        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "late")) is None

    async def test_release_after_steal_is_violation(self, session_factory, coordinator):
        first = LockHandle("stolen", "stolen-1", SHORT)
        second = LockHandle("stolen", "stolen-2", LONG)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, first))
        await asyncio.sleep(0.4)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, second))

        with pytest.raises(OwnershipViolationError):
            await in_tx(session_factory, lambda db: coordinator.release(db, first))

        assert await in_tx(session_factory, lambda db: coordinator.get_owner(db, "stolen")) == "stolen-2"


class MissesRowOnce(LockCoordinator):
    """Coordinator whose first read misses an existing row.

    On PostgreSQL two contenders can both find no row and race their
    INSERTs; the loser hits IntegrityError and must re-read. SQLite runs
    every ledger transaction under BEGIN IMMEDIATE, so a second writer
    always sees the first one's committed row and that conflict never
    happens here. Skipping the first read forces the INSERT into an
    existing row, which is the same state the PostgreSQL loser is in.
    See ``test_postgres.py`` for the real race.
    """

    def __init__(self) -> None:
        super().__init__()
        self.reads = 0

    async def _load_for_update(self, db, name):
        self.reads += 1
        if self.reads == 1:
            return None
        return await super()._load_for_update(db, name)


class TestInsertRace:
    async def test_losing_insert_sees_live_winner(self, session_factory, coordinator):
        winner = LockHandle("race", "race-1", LONG)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, winner))

        racer = MissesRowOnce()
        loser = LockHandle("race", "race-2", LONG)

        assert await in_tx(session_factory, lambda db: racer.acquire(db, loser)) is False
        assert racer.reads == 2
        assert (await load_entry(session_factory, "race")).owner == "race-1"

    async def test_losing_insert_steals_expired_winner(self, session_factory, coordinator):
        winner = LockHandle("race-exp", "race-exp-1", SHORT)
        await in_tx(session_factory, lambda db: coordinator.acquire(db, winner))
        await asyncio.sleep(0.4)

        racer = MissesRowOnce()
        loser = LockHandle("race-exp", "race-exp-2", LONG)

        assert await in_tx(session_factory, lambda db: racer.acquire(db, loser)) is True
        assert (await load_entry(session_factory, "race-exp")).owner == "race-exp-2"
