"""Datetime helpers.

The ledger stores UTC timestamps as naive datetimes. Lease decisions never
use the local clock; see ``lockledger.db.clock``.
"""

from __future__ import annotations

from datetime import UTC, datetime


def as_naive_utc(value: datetime | str) -> datetime:
    """Normalize a driver-returned timestamp to a naive UTC datetime.

    Drivers disagree here: SQLite hands back text, PostgreSQL an aware
    datetime, MySQL a naive one already in UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value
