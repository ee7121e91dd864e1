"""Caller-side lock handle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from lockledger.errors import InvalidLeaseError
from lockledger.utils.duration import parse_duration


@dataclass(frozen=True)
class LockHandle:
    """One contender's view of a named lock.

    A handle carries no acquired/released state of its own; ownership is
    always re-read from the ledger. It is created once per contender and
    reused across acquire/release cycles.

    Attributes:
        name: Lock identity (ledger primary key)
        identity: Value written as ``owner`` when this contender wins
        lease: How long a successful acquire holds before becoming stealable
    """

    name: str
    identity: str
    lease: timedelta

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidLeaseError("Lock name must not be empty")
        if not self.identity:
            raise InvalidLeaseError(
                "Lock identity must not be empty", details={"name": self.name}
            )
        # Normalizes "1s", 30, "PT1H", ... and rejects non-positive leases
        object.__setattr__(self, "lease", parse_duration(self.lease))
