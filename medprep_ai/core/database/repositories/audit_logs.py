"""
Audit log repository.

Entries are mostly written by the audit hook inside the flush of the change
they describe; this repository covers direct writes and reporting queries.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from ..entities.audit_logs import AuditLog
from .base import SQLModelRepository


class AuditLogRepository(SQLModelRepository[AuditLog]):
    """Repository for audit log entries using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, AuditLog)

    async def list_by_action_since(self, action: str, since: datetime, limit: int = 1000) -> List[AuditLog]:
        """Entries of one action type newer than ``since``, newest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.action == action, col(AuditLog.timestamp) > since)
            .order_by(col(AuditLog.timestamp).desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_document(self, collection: str, document_id: str, action: Optional[str] = None) -> List[AuditLog]:
        """Audit trail of one document, oldest first."""
        stmt = select(AuditLog).where(AuditLog.collection == collection, AuditLog.document_id == document_id)
        if action is not None:
            stmt = stmt.where(AuditLog.action == action)
        result = await self.session.execute(stmt.order_by(col(AuditLog.timestamp)))
        return list(result.scalars().all())
