"""lockledger error types.

Error codes are stable strings for programmatic handling. Lock contention
is never reported through an exception: ``acquire`` returns ``False``.
"""

from __future__ import annotations

from typing import Any


class LockError(Exception):
    """Base error for all lockledger exceptions."""

    code: str = "lock_error"
    message: str = "Lock operation failed"

    def __init__(
        self,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logs and host error payloads."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class OwnershipViolationError(LockError):
    """Release attempted by an identity that does not hold the lock."""

    code = "ownership_violation"
    message = "Lock is not held by the caller"


class LockStorageError(LockError):
    """The ledger transaction failed (connectivity, timeout, schema, ...).

    The original driver exception is kept as ``__cause__``.
    """

    code = "storage_error"
    message = "Lock ledger storage failure"


class InvalidLeaseError(LockError, ValueError):
    """Lease duration, lock name or identity is not usable."""

    code = "invalid_lease"
    message = "Invalid lock lease"
