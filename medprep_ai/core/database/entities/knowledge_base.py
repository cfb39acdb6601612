"""
Knowledge base entity model.

Uploaded reference documents (course books, lecture notes) later used as
context for AI generation.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlmodel import Field

from ..base import DocumentBase


class DocumentType(str, Enum):
    PDF = "pdf"
    EPUB = "epub"
    DOCX = "docx"
    TXT = "txt"


class ProcessingStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class KnowledgeBaseDocument(DocumentBase, table=True):
    """Uploaded document and its extraction state.

    Table: mp_knowledge_base
    """

    __tablename__ = "mp_knowledge_base"

    title: str = Field(max_length=255)
    original_file_name: str = Field(max_length=255)
    document_type: str = Field(max_length=8)
    file_path: str = Field(max_length=1024)
    file_size: int = Field(default=0)
    extracted_content: Optional[str] = Field(default=None)
    processing_status: str = Field(default=ProcessingStatus.QUEUED.value, max_length=16, index=True)
    validation_status: str = Field(default=ValidationStatus.PENDING.value, max_length=16)
    is_active: bool = Field(default=False)
    uploaded_by: Optional[str] = Field(default=None, foreign_key="mp_users.id", max_length=64)
    medical_domain: Optional[str] = Field(default=None, max_length=128)
    difficulty: Optional[str] = Field(default=None, max_length=16)

    def __repr__(self) -> str:
        return f"KnowledgeBaseDocument(id={self.id}, title={self.title}, status={self.processing_status})"
