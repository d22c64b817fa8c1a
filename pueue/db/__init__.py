"""
Database module.
Contains database connection, models, repository and schema management.
"""

from pueue.db.connection import (
    close_db,
    create_session_factory,
    get_async_session,
    get_engine,
    get_session_context,
    get_session_factory,
    init_db,
)
from pueue.db.models import Base, Job

__all__ = [
    "get_async_session",
    "get_session_context",
    "get_session_factory",
    "create_session_factory",
    "get_engine",
    "init_db",
    "close_db",
    "Job",
    "Base",
]
