"""SQLModel data models."""

from lockledger.models.lock import LockEntry

__all__ = ["LockEntry"]
