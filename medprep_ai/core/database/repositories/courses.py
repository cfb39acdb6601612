"""
Category repository.

Categories drive adaptive selection; only categories whose adaptive
settings are not explicitly disabled take part in it.
"""

from __future__ import annotations

from typing import Dict, Iterable, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from ..entities.courses import Category
from .base import SQLModelRepository


class CategoryRepository(SQLModelRepository[Category]):
    """Repository for category data access operations using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Category)

    async def get_many(self, category_ids: Iterable[str]) -> Dict[str, Category]:
        """Load several categories keyed by id; unknown ids are skipped."""
        ids = list({str(category_id) for category_id in category_ids})
        if not ids:
            return {}
        result = await self.session.execute(select(Category).where(col(Category.id).in_(ids)))
        return {category.id: category for category in result.scalars().all()}

    async def list_adaptive(self) -> List[Category]:
        """Categories available to adaptive quizzes."""
        result = await self.session.execute(select(Category).order_by(Category.title))
        return [
            category
            for category in result.scalars().all()
            if (category.adaptive_settings or {}).get("isActive", True)
        ]
