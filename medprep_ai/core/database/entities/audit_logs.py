"""
Audit log entity model.

Audit entries are written by the audit hook for every change of an audited
table and by the error services (``adaptive_quiz_error``,
``technical_error_critical``). The table itself is never audited.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import JSON, Field

from ..base import DocumentBase, utc_now


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADAPTIVE_QUIZ_ERROR = "adaptive_quiz_error"
    TECHNICAL_ERROR_CRITICAL = "technical_error_critical"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditLog(DocumentBase, table=True):
    """Trace of a data change or of a handled error.

    ``diff`` holds ``{"before", "after"}`` snapshots for data changes while
    ``details`` carries free-form error context.

    Table: mp_audit_logs
    """

    __tablename__ = "mp_audit_logs"

    user_id: Optional[str] = Field(default=None, max_length=64, index=True)
    action: str = Field(max_length=64, index=True)
    collection: Optional[str] = Field(default=None, max_length=64, index=True)
    document_id: Optional[str] = Field(default=None, max_length=64)
    diff: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    details: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    severity: Optional[str] = Field(default=None, max_length=16)
    timestamp: datetime = Field(default_factory=utc_now, index=True)

    def __repr__(self) -> str:
        return f"AuditLog(id={self.id}, action={self.action}, collection={self.collection})"
