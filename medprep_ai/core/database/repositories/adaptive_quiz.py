"""
Adaptive quiz repositories.

Data access for adaptive sessions (rate-limit windows, history, recently
used questions), their results and the stored performance snapshots.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from ..entities.adaptive_quiz import AdaptiveQuizResult, AdaptiveQuizSession, UserPerformance
from .base import SQLModelRepository


class AdaptiveQuizSessionRepository(SQLModelRepository[AdaptiveQuizSession]):
    """Repository for adaptive quiz sessions using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AdaptiveQuizSession)

    async def get_by_session_id(self, session_id: str) -> Optional[AdaptiveQuizSession]:
        """Find a session by its public identifier.

        Args:
            session_id: Public ``session_id`` handed to the client

        Returns:
            The session or None
        """
        stmt = select(AdaptiveQuizSession).where(AdaptiveQuizSession.session_id == session_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        return await self.count(
            AdaptiveQuizSession.user_id == user_id,
            col(AdaptiveQuizSession.created_at) >= since,
        )

    async def get_latest_for_user(self, user_id: str) -> Optional[AdaptiveQuizSession]:
        stmt = (
            select(AdaptiveQuizSession)
            .where(AdaptiveQuizSession.user_id == user_id)
            .order_by(col(AdaptiveQuizSession.created_at).desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_created_since(self, user_id: str, since: datetime, limit: int = 50) -> List[AdaptiveQuizSession]:
        stmt = (
            select(AdaptiveQuizSession)
            .where(AdaptiveQuizSession.user_id == user_id, col(AdaptiveQuizSession.created_at) >= since)
            .order_by(col(AdaptiveQuizSession.created_at).desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_user(self, user_id: str, limit: int, offset: int) -> List[AdaptiveQuizSession]:
        """One page of a user's sessions, newest first."""
        stmt = (
            select(AdaptiveQuizSession)
            .where(AdaptiveQuizSession.user_id == user_id)
            .order_by(col(AdaptiveQuizSession.created_at).desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_user(self, user_id: str) -> int:
        return await self.count(AdaptiveQuizSession.user_id == user_id)


class AdaptiveQuizResultRepository(SQLModelRepository[AdaptiveQuizResult]):
    """Repository for adaptive quiz results using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AdaptiveQuizResult)

    async def get_by_session(self, session_pk: str) -> Optional[AdaptiveQuizResult]:
        """Result attached to a session row (by the session's primary key)."""
        stmt = select(AdaptiveQuizResult).where(AdaptiveQuizResult.session_id == session_pk)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_recent_for_user(self, user_id: str, limit: int) -> List[AdaptiveQuizResult]:
        stmt = (
            select(AdaptiveQuizResult)
            .where(AdaptiveQuizResult.user_id == user_id)
            .order_by(col(AdaptiveQuizResult.completed_at).desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class UserPerformanceRepository(SQLModelRepository[UserPerformance]):
    """Repository for stored performance snapshots using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, UserPerformance)

    async def get_by_user(self, user_id: str) -> Optional[UserPerformance]:
        stmt = select(UserPerformance).where(UserPerformance.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def delete_by_user(self, user_id: str) -> bool:
        """Drop the snapshot of a user.

        Returns:
            True if a snapshot existed
        """
        snapshot = await self.get_by_user(user_id)
        if snapshot is None:
            return False
        await self.session.delete(snapshot)
        await self.session.commit()
        return True
