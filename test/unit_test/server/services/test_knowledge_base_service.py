from pathlib import Path

import pytest

from medprep_ai.core.database.entities.knowledge_base import KnowledgeBaseDocument
from medprep_ai.server.services.knowledge_base import (
    DocumentTooLargeError,
    KnowledgeBaseService,
    UnsupportedDocumentError,
    detect_document_type,
)


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("cours.pdf", "pdf"),
        ("Cours.PDF", "pdf"),
        ("livre.epub", "epub"),
        ("notes.docx", "docx"),
        ("ancien.doc", "docx"),
        ("resume.txt", "txt"),
        ("image.png", "unknown"),
        ("sans_extension", "unknown"),
    ],
)
def test_detect_document_type(filename, expected):
    assert detect_document_type(filename) == expected


class TestUploadDocument:
    async def test_text_document_is_extracted_at_once(self, session, make_user, tmp_path):
        user = await make_user(role="teacher")
        service = KnowledgeBaseService(session, upload_dir=str(tmp_path), max_size_mb=1)

        data = await service.upload_document("Cardio notes.txt", "Le cœur a quatre cavités.".encode(), user.id)

        assert data["title"] == "Cardio notes"
        assert data["documentType"] == "txt"
        assert data["processingStatus"] == "completed"
        assert data["statusEndpoint"] == f"/api/knowledge-base/{data['knowledgeBaseId']}/status"

        document = await session.get(KnowledgeBaseDocument, data["knowledgeBaseId"])
        assert document.extracted_content == "Le cœur a quatre cavités."
        assert document.uploaded_by == user.id
        assert document.is_active is False
        stored = Path(document.file_path)
        assert stored.parent == tmp_path
        assert stored.name == f"{document.id}_Cardio_notes.txt"
        assert stored.read_bytes() == "Le cœur a quatre cavités.".encode()

    async def test_binary_document_is_queued(self, session, make_user, tmp_path):
        user = await make_user()
        service = KnowledgeBaseService(session, upload_dir=str(tmp_path), max_size_mb=1)

        data = await service.upload_document("anatomie.pdf", b"%PDF-1.4 fake", user.id)

        assert data["processingStatus"] == "queued"
        document = await session.get(KnowledgeBaseDocument, data["knowledgeBaseId"])
        assert document.extracted_content is None
        assert document.file_size == len(b"%PDF-1.4 fake")

    async def test_unsupported_format(self, session, make_user, tmp_path):
        user = await make_user()
        service = KnowledgeBaseService(session, upload_dir=str(tmp_path), max_size_mb=1)

        with pytest.raises(UnsupportedDocumentError) as exc_info:
            await service.upload_document("schema.png", b"png", user.id)

        assert str(exc_info.value) == (
            "Type de fichier non supporté: unknown. Formats acceptés: PDF, EPUB, DOCX, TXT"
        )
        assert list(tmp_path.iterdir()) == []

    async def test_file_above_size_limit(self, session, make_user, tmp_path):
        user = await make_user()
        service = KnowledgeBaseService(session, upload_dir=str(tmp_path), max_size_mb=1)

        with pytest.raises(DocumentTooLargeError) as exc_info:
            await service.upload_document("gros.txt", b"x" * (1024 * 1024 + 1), user.id)

        assert exc_info.value.max_size_mb == 1
        assert "Taille maximale: 1 Mo" in str(exc_info.value)


class TestProcessingStatus:
    async def test_unknown_document(self, session, tmp_path):
        service = KnowledgeBaseService(session, upload_dir=str(tmp_path))
        assert await service.get_processing_status("missing") is None

    async def test_completed_text_document(self, session, make_user, tmp_path):
        user = await make_user()
        service = KnowledgeBaseService(session, upload_dir=str(tmp_path), max_size_mb=1)
        data = await service.upload_document("notes.txt", b"abcdef", user.id)

        status = await service.get_processing_status(data["knowledgeBaseId"])

        assert status["progress"] == 100
        assert status["estimatedTimeRemaining"] == "Terminé"
        assert status["extraction"] == {"hasContent": True, "textLength": 6}
        assert status["fileName"] == "notes.txt"
        assert status["validationStatus"] == "pending"

    @pytest.mark.parametrize(
        "processing_status, progress",
        [("queued", 5), ("processing", 50), ("failed", 0), ("mystery", 0)],
    )
    async def test_progress_by_status(self, session, tmp_path, processing_status, progress):
        document = KnowledgeBaseDocument(
            title="Histologie",
            original_file_name="histologie.pdf",
            document_type="pdf",
            file_path=str(tmp_path / "histologie.pdf"),
            processing_status=processing_status,
        )
        session.add(document)
        await session.commit()

        status = await KnowledgeBaseService(session, upload_dir=str(tmp_path)).get_processing_status(document.id)

        assert status["progress"] == progress
        assert status["extraction"]["hasContent"] is False
