"""
Centralized database layer for MedPrep AI.

This package holds every table of the platform and the data access layer
built on top of them.

Structure:
- entities/: SQLModel table definitions, one module per business domain
- repositories/: Async data access classes, one per aggregate
- session.py: Global engine and session factory management
- utils.py: Engine/session factory helpers
"""

from .base import Base, DocumentBase, new_id, utc_now
from .session import (
    async_session_maker,
    engine,
    get_session,
    init_db,
)
from .utils import (
    create_all,
    create_engine,
    create_sessionmaker,
)

__all__ = [
    "Base",
    "DocumentBase",
    "async_session_maker",
    "create_all",
    "create_engine",
    "create_sessionmaker",
    "engine",
    "get_session",
    "init_db",
    "new_id",
    "utc_now",
]
