"""PostgreSQL database module."""

from .client import init_db, close_db, get_db_session, ping_db

__all__ = [
    "init_db",
    "close_db",
    "get_db_session",
    "ping_db",
]
