"""Distributed locking over the ledger table.

Usage:
    from lockledger.locking import LockService

    service = LockService.from_settings(get_settings())
    lock = service.lock("maintenance", "node-a", "PT5M")

    async with lock.held() as acquired:
        if acquired:
            ...
"""

from lockledger.locking.contention import (
    ContentionResult,
    Outcome,
    race_acquire,
    race_release,
    run_contention_round,
    run_threaded_contention_round,
)
from lockledger.locking.coordinator import LockCoordinator
from lockledger.locking.executor import SessionTransactionExecutor, TransactionExecutor
from lockledger.locking.handle import LockHandle
from lockledger.locking.service import LockService
from lockledger.locking.strategy import LockingStrategy, TransactionalLock

__all__ = [
    "ContentionResult",
    "LockCoordinator",
    "LockHandle",
    "LockService",
    "LockingStrategy",
    "Outcome",
    "SessionTransactionExecutor",
    "TransactionExecutor",
    "TransactionalLock",
    "race_acquire",
    "race_release",
    "run_contention_round",
    "run_threaded_contention_round",
]
