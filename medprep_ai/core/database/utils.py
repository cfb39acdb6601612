"""
Database utility functions for engine and session management.

Functions:
- create_engine: Creates async SQLAlchemy engine with URL normalization
- create_sessionmaker: Creates async session factory with safe defaults
- create_all: Creates all tables from ORM metadata (for tests/dev)
"""

from __future__ import annotations

import re

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .base import Base


def normalize_database_url(db_url: str) -> str:
    """Rewrite ``postgres://`` style URLs so the asyncpg driver is used.

    Other schemes (``sqlite+aiosqlite://`` in tests) are returned unchanged.
    """
    return re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        db_url: Database connection URL

    Returns:
        Configured AsyncEngine instance
    """
    return create_async_engine(normalize_database_url(db_url), pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project.

    Args:
        engine: Async SQLAlchemy engine

    Returns:
        Configured async session factory
    """
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    Production should use Alembic migrations instead.

    Args:
        engine: Async SQLAlchemy engine
    """
    # Registers every table on the metadata before creating them.
    from . import entities  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
