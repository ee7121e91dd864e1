"""Maintenance cycles guarded by a ledger lease.

A cycle runs the host's jobs only on the instance that wins the
maintenance lock, and only while that lock's lease is live: each job gets
the time left on the lease, and jobs that would start after it has run
out are not started, since another instance may already own the lock.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping

import structlog

from lockledger.config import Settings, get_settings
from lockledger.errors import LockError, OwnershipViolationError
from lockledger.locking.service import LockService
from lockledger.locking.strategy import TransactionalLock

logger = structlog.get_logger()

MaintenanceJob = Callable[[], Awaitable[object]]


@dataclass
class CycleReport:
    """What one maintenance cycle did on this instance.

    ``holder`` is set when the cycle was skipped because another identity
    held the lock (it may be None if that lease ended before it was read).
    ``lease_lost`` means the lock was stolen before the cycle released it.
    """

    acquired: bool
    holder: str | None = None
    completed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    not_started: list[str] = field(default_factory=list)
    lease_lost: bool = False

    @property
    def success(self) -> bool:
        return self.acquired and not self.failed and not self.not_started


class LeasedMaintenance:
    def __init__(
        self,
        lock: TransactionalLock,
        jobs: Mapping[str, MaintenanceJob],
        interval_seconds: float = 300,
    ) -> None:
        self._lock = lock
        self._jobs = dict(jobs)
        self._interval_seconds = interval_seconds
        self._log = logger.bind(
            service="maintenance",
            lock=lock.handle.name,
            identity=lock.handle.identity,
        )

    @classmethod
    def from_settings(
        cls,
        service: LockService,
        jobs: Mapping[str, MaintenanceJob],
        settings: Settings | None = None,
    ) -> "LeasedMaintenance":
        """Wire the maintenance lock from ``settings.maintenance``.

        The lock identity is this instance's ``lock.instance_id``.
        """
        settings = settings or get_settings()
        config = settings.maintenance
        lock = service.lock(config.lock_name, settings.lock.get_instance_id(), config.lease)
        return cls(lock, jobs, interval_seconds=config.interval_seconds)

    @property
    def lock(self) -> TransactionalLock:
        return self._lock

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    async def run_cycle(self) -> CycleReport:
        """Run every job once if this instance wins the maintenance lock.

        Raises:
            LockStorageError: If the ledger cannot be read or written
        """
        loop = asyncio.get_running_loop()
        # Measured before acquiring, so the local deadline never trails the ledger's
        deadline = loop.time() + self._lock.handle.lease.total_seconds()

        if not await self._lock.acquire():
            holder = await self._lock.owner()
            self._log.info("maintenance.cycle.skipped", holder=holder)
            return CycleReport(acquired=False, holder=holder)

        report = CycleReport(acquired=True)
        lease_left = True
        try:
            for name, job in self._jobs.items():
                remaining = deadline - loop.time()
                if not lease_left or remaining <= 0:
                    report.not_started.append(name)
                    continue
                lease_left = await self._run_job(name, job, remaining, report)
        finally:
            try:
                await self._lock.release()
            except OwnershipViolationError as e:
                report.lease_lost = True
                self._log.warning("maintenance.lock.lost", **e.details)

        if report.not_started:
            self._log.warning("maintenance.cycle.lease_exhausted", not_started=report.not_started)
        self._log.info(
            "maintenance.cycle.complete",
            completed=len(report.completed),
            failed=len(report.failed),
        )
        return report

    async def _run_job(
        self, name: str, job: MaintenanceJob, remaining: float, report: CycleReport
    ) -> bool:
        """Run one job within the remaining lease; False once the lease ran out."""
        try:
            await asyncio.wait_for(job(), timeout=remaining)
        except asyncio.TimeoutError:
            self._log.warning("maintenance.job.lease_expired", job=name)
            report.failed[name] = "lease expired"
            return False
        except Exception as e:
            self._log.exception("maintenance.job.failed", job=name, error=str(e))
            report.failed[name] = str(e)
        else:
            self._log.info("maintenance.job.complete", job=name)
            report.completed.append(name)
        return True

    async def serve(self, stop: asyncio.Event) -> None:
        """Run a cycle every ``interval_seconds`` until ``stop`` is set.

        Ledger failures are logged and retried on the next interval.
        """
        self._log.info("maintenance.serve.start", interval_seconds=self._interval_seconds)
        while not stop.is_set():
            try:
                await self.run_cycle()
            except LockError as e:
                self._log.error("maintenance.cycle.error", error=e.message, code=e.code)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                pass
        self._log.info("maintenance.serve.stopped")
