"""
Global database session and engine management.

This module manages the global AsyncEngine and async_sessionmaker instances
that are used throughout the application for database access.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.server.core.config import settings

from .utils import create_all, create_engine, create_sessionmaker

logger = logging.getLogger(__name__)

engine = create_engine(settings.database.url)
async_session_maker = create_sessionmaker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency generator for database sessions.

    Yields:
        AsyncSession: An asynchronous SQLAlchemy session.
    """
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """
    Initialize the database.

    Creates any missing table. Alembic remains the source of truth for
    production schemas; this keeps local and test databases usable.
    """
    await create_all(engine)
    logger.info("Database tables ensured")
