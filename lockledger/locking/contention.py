"""Many-contender race harness.

Verifies the mutual-exclusion contract of a ledger backend: N contenders
race ``acquire`` on one lock name and at most one may win; then all of them
race ``release`` and at most one (the winner) may succeed.

Two drivers are provided:
- ``run_contention_round`` races already-built locks on the current event
  loop. With ``SessionTransactionExecutor`` each contender has its own
  session and connection.
- ``run_threaded_contention_round`` gives every contender its own thread,
  event loop and engine, which is as close as one process gets to
  independent hosts sharing only the database.

Usage:
    result = await run_contention_round([service.lock("job", f"node-{i}") for i in range(13)])
    assert result.acquire_count == 1
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import structlog

from lockledger.db.session import create_engine_for, make_session_factory
from lockledger.errors import OwnershipViolationError
from lockledger.locking.coordinator import LockCoordinator
from lockledger.locking.executor import SessionTransactionExecutor
from lockledger.locking.handle import LockHandle
from lockledger.locking.strategy import LockingStrategy, TransactionalLock

logger = structlog.get_logger()

_BARRIER_TIMEOUT_SECONDS = 30.0


@dataclass
class Outcome:
    """Result of one contender's call.

    Attributes:
        identity: Contender label (the lock identity where known)
        success: acquire returned True / release raised nothing
        error: Unexpected exception, if any. Ownership violations on
            release are an expected loss and are not recorded here.
    """

    identity: str
    success: bool = False
    error: BaseException | None = None


@dataclass
class ContentionResult:
    """Outcomes of one acquire race followed by one release race."""

    acquired: list[Outcome] = field(default_factory=list)
    released: list[Outcome] = field(default_factory=list)

    @property
    def acquire_count(self) -> int:
        return sum(1 for o in self.acquired if o.success)

    @property
    def release_count(self) -> int:
        return sum(1 for o in self.released if o.success)

    @property
    def winners(self) -> list[str]:
        return [o.identity for o in self.acquired if o.success]

    @property
    def errors(self) -> list[BaseException]:
        return [o.error for o in (*self.acquired, *self.released) if o.error is not None]


def _label(lock: LockingStrategy) -> str:
    handle = getattr(lock, "handle", None)
    return handle.identity if handle is not None else repr(lock)


async def _try_acquire(lock: LockingStrategy) -> Outcome:
    outcome = Outcome(identity=_label(lock))
    try:
        outcome.success = await lock.acquire()
    except Exception as e:
        logger.debug("contention.acquire.error", contender=outcome.identity, error=str(e))
        outcome.error = e
    return outcome


async def _try_release(lock: LockingStrategy) -> Outcome:
    outcome = Outcome(identity=_label(lock))
    try:
        await lock.release()
        outcome.success = True
    except OwnershipViolationError:
        pass
    except Exception as e:
        logger.debug("contention.release.error", contender=outcome.identity, error=str(e))
        outcome.error = e
    return outcome


async def race_acquire(locks: Sequence[LockingStrategy]) -> list[Outcome]:
    """Call ``acquire`` on every lock concurrently."""
    return list(await asyncio.gather(*(_try_acquire(lock) for lock in locks)))


async def race_release(locks: Sequence[LockingStrategy]) -> list[Outcome]:
    """Call ``release`` on every lock concurrently."""
    return list(await asyncio.gather(*(_try_release(lock) for lock in locks)))


async def run_contention_round(locks: Sequence[LockingStrategy]) -> ContentionResult:
    """Race acquire on all locks, then race release on all locks."""
    result = ContentionResult()
    result.acquired = await race_acquire(locks)
    result.released = await race_release(locks)
    logger.info(
        "contention.round.complete",
        contenders=len(locks),
        acquired=result.acquire_count,
        released=result.release_count,
        errors=len(result.errors),
    )
    return result


def _run_in_own_loop(
    url: str,
    handle: LockHandle,
    barrier: threading.Barrier,
    call: Callable[[LockingStrategy], Awaitable[Outcome]],
    busy_timeout_seconds: float,
) -> Outcome:
    async def _contend() -> Outcome:
        engine = create_engine_for(url, busy_timeout_seconds=busy_timeout_seconds)
        try:
            lock = TransactionalLock(
                handle,
                LockCoordinator(),
                SessionTransactionExecutor(make_session_factory(engine)),
            )
            # Line every thread up so the calls really overlap
            barrier.wait(timeout=_BARRIER_TIMEOUT_SECONDS)
            return await call(lock)
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_contend())
    except threading.BrokenBarrierError as e:
        return Outcome(identity=handle.identity, error=e)


def _threaded_phase(
    url: str,
    handles: Sequence[LockHandle],
    call: Callable[[LockingStrategy], Awaitable[Outcome]],
    busy_timeout_seconds: float,
) -> list[Outcome]:
    barrier = threading.Barrier(len(handles))
    with ThreadPoolExecutor(max_workers=len(handles)) as pool:
        futures = [
            pool.submit(_run_in_own_loop, url, handle, barrier, call, busy_timeout_seconds)
            for handle in handles
        ]
        return [future.result() for future in futures]


def run_threaded_contention_round(
    url: str,
    handles: Sequence[LockHandle],
    busy_timeout_seconds: float = 30.0,
) -> ContentionResult:
    """Race acquire then release with one thread, loop and engine per contender.

    The ledger table must already exist at ``url``. Must not be called
    from a running event loop thread (each worker runs ``asyncio.run``).
    """
    result = ContentionResult()
    result.acquired = _threaded_phase(url, handles, _try_acquire, busy_timeout_seconds)
    result.released = _threaded_phase(url, handles, _try_release, busy_timeout_seconds)
    logger.info(
        "contention.threaded_round.complete",
        contenders=len(handles),
        acquired=result.acquire_count,
        released=result.release_count,
        errors=len(result.errors),
    )
    return result
