"""Database package: engine, sessions, models and repositories."""
from database.base import Base, engine, async_session_maker, init_db, close_db

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "init_db",
    "close_db",
]
