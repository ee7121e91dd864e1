"""Lock ledger data model.

One row per lock name. ``owner`` and ``expires_at`` are only ever written
by ``LockCoordinator``; a row with ``owner`` unset means "unlocked".
"""

from __future__ import annotations

from datetime import datetime

from pydantic import NaiveDatetime
from sqlmodel import Field, SQLModel


class LockEntry(SQLModel, table=True):
    """Current (or most recent) ownership of a named lock."""

    __tablename__ = "locks"

    name: str = Field(primary_key=True, max_length=255)
    owner: str | None = Field(default=None, max_length=255)

    # Naive UTC, taken from the database clock
    expires_at: NaiveDatetime | None = Field(default=None)

    def is_held_at(self, now: datetime) -> bool:
        """Whether the lease is live (not stealable) at ``now``."""
        return (
            self.owner is not None
            and self.expires_at is not None
            and self.expires_at > now
        )
