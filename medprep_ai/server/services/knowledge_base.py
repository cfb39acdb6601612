"""
Knowledge base document upload.

Uploaded files are stored under the upload directory and registered as
knowledge base documents. Plain text is extracted right away; other formats
stay queued for extraction.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import new_id
from medprep_ai.core.database.entities.knowledge_base import (
    DocumentType,
    KnowledgeBaseDocument,
    ProcessingStatus,
    ValidationStatus,
)
from medprep_ai.core.database.repositories import KnowledgeBaseRepository
from medprep_ai.server.core.config import settings

logger = logging.getLogger(__name__)

EXTENSIONS = {
    "pdf": DocumentType.PDF,
    "epub": DocumentType.EPUB,
    "docx": DocumentType.DOCX,
    "doc": DocumentType.DOCX,
    "txt": DocumentType.TXT,
}

PROGRESS = {
    ProcessingStatus.QUEUED.value: (5, "3-5 minutes"),
    ProcessingStatus.PROCESSING.value: (50, "1-3 minutes"),
    ProcessingStatus.COMPLETED.value: (100, "Terminé"),
    ProcessingStatus.FAILED.value: (0, "Erreur"),
}

_unsafe_chars = re.compile(r"[^A-Za-z0-9._-]+")


class UnsupportedDocumentError(Exception):
    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(
            f"Type de fichier non supporté: {document_type}. Formats acceptés: PDF, EPUB, DOCX, TXT"
        )


class DocumentTooLargeError(Exception):
    def __init__(self, max_size_mb: int):
        self.max_size_mb = max_size_mb
        super().__init__(f"Fichier trop volumineux. Taille maximale: {max_size_mb} Mo")


def detect_document_type(filename: str) -> str:
    extension = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    document_type = EXTENSIONS.get(extension)
    return document_type.value if document_type else "unknown"


class KnowledgeBaseService:
    def __init__(
        self,
        session: AsyncSession,
        upload_dir: Optional[str] = None,
        max_size_mb: Optional[int] = None,
    ):
        self.session = session
        self.documents = KnowledgeBaseRepository(session)
        self.upload_dir = Path(upload_dir or settings.uploads.directory)
        self.max_size_mb = max_size_mb or settings.uploads.max_size_mb

    async def upload_document(self, filename: str, content: bytes, user_id: str) -> Dict[str, Any]:
        """
        Store an uploaded document and register it.

        Args:
            filename: Client file name
            content: Raw file content
            user_id: Uploading user

        Returns:
            ``{knowledgeBaseId, title, documentType, processingStatus,
            statusEndpoint}``

        Raises:
            UnsupportedDocumentError: For a file that is not PDF, EPUB, DOCX or TXT
            DocumentTooLargeError: Above the configured size limit
        """
        document_type = detect_document_type(filename)
        if document_type == "unknown":
            raise UnsupportedDocumentError(document_type)
        if len(content) > self.max_size_mb * 1024 * 1024:
            raise DocumentTooLargeError(self.max_size_mb)

        document_id = new_id()
        safe_name = _unsafe_chars.sub("_", Path(filename).name)
        path = self.upload_dir / f"{document_id}_{safe_name}"
        await asyncio.to_thread(self._write, path, content)

        extracted: Optional[str] = None
        status = ProcessingStatus.QUEUED.value
        if document_type == DocumentType.TXT.value:
            extracted = content.decode("utf-8", errors="replace")
            status = ProcessingStatus.COMPLETED.value

        title = Path(filename).stem or filename
        document = await self.documents.create(
            KnowledgeBaseDocument(
                id=document_id,
                title=title,
                original_file_name=filename,
                document_type=document_type,
                file_path=str(path),
                file_size=len(content),
                extracted_content=extracted,
                processing_status=status,
                validation_status=ValidationStatus.PENDING.value,
                is_active=False,
                uploaded_by=user_id,
            )
        )
        logger.info(f"Knowledge base document {document.id} uploaded by {user_id} ({document_type}, {status})")

        return {
            "knowledgeBaseId": document.id,
            "title": document.title,
            "documentType": document.document_type,
            "processingStatus": document.processing_status,
            "statusEndpoint": f"/api/knowledge-base/{document.id}/status",
        }

    async def get_processing_status(self, document_id: str) -> Optional[Dict[str, Any]]:
        document = await self.documents.get_by_id(document_id)
        if document is None:
            return None
        progress, remaining = PROGRESS.get(document.processing_status, (0, "Inconnu"))
        return {
            "id": document.id,
            "title": document.title,
            "fileName": document.original_file_name,
            "documentType": document.document_type,
            "processingStatus": document.processing_status,
            "validationStatus": document.validation_status,
            "isActive": document.is_active,
            "uploadedAt": document.created_at.isoformat() if document.created_at else None,
            "extraction": {
                "hasContent": bool(document.extracted_content),
                "textLength": len(document.extracted_content or ""),
            },
            "progress": progress,
            "estimatedTimeRemaining": remaining,
        }

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
