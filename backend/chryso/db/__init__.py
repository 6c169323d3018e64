"""Database utilities for Chryso Forms."""

from chryso.db.session import (
    AsyncSessionLocal,
    close_db,
    create_database_engine,
    create_session_factory,
    engine,
    get_async_session,
    init_db,
)

__all__ = [
    "AsyncSessionLocal",
    "create_database_engine",
    "create_session_factory",
    "engine",
    "get_async_session",
    "init_db",
    "close_db",
]
