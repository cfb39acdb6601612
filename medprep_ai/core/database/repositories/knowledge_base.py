"""
Knowledge base repository.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from ..entities.knowledge_base import KnowledgeBaseDocument
from .base import SQLModelRepository


class KnowledgeBaseRepository(SQLModelRepository[KnowledgeBaseDocument]):
    """Repository for uploaded knowledge base documents using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, KnowledgeBaseDocument)
