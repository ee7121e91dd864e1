"""Database module."""

from lockledger.db.clock import database_now
from lockledger.db.session import (
    close_db,
    create_engine_for,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "close_db",
    "create_engine_for",
    "database_now",
    "get_engine",
    "get_session_factory",
    "init_db",
]
