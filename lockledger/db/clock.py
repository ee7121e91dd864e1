"""Authoritative clock for lease decisions.

Lease expiry is always computed and compared against the database's own
"now", so contenders on hosts with skewed clocks agree on whether a lease
has elapsed.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lockledger.utils.datetime import as_naive_utc


def _now_expression(dialect_name: str):
    if dialect_name == "sqlite":
        # CURRENT_TIMESTAMP is whole seconds only on SQLite
        return func.strftime("%Y-%m-%d %H:%M:%f", "now")
    if dialect_name == "postgresql":
        # now() is frozen at transaction start, which may predate a row lock wait
        return func.clock_timestamp()
    if dialect_name in ("mysql", "mariadb"):
        return func.utc_timestamp(6)
    return func.current_timestamp()


async def database_now(session: AsyncSession) -> datetime:
    """Read the current time from the database as a naive UTC datetime."""
    dialect_name = session.get_bind().dialect.name
    result = await session.execute(select(_now_expression(dialect_name)))
    return as_naive_utc(result.scalar_one())
