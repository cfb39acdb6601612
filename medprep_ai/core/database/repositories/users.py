"""
User repository.

Provides lookups used by authentication (by id) and Stripe reconciliation
(by email).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..entities.users import User
from .base import SQLModelRepository


class UserRepository(SQLModelRepository[User]):
    """Repository for user data access operations using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, User)

    async def get_by_email(self, email: str) -> Optional[User]:
        """Find a user by email, ignoring surrounding blanks and case.

        Args:
            email: Address to look up

        Returns:
            Matching user or None
        """
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self.session.execute(stmt)
        return result.scalars().first()
