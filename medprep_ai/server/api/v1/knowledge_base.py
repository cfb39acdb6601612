"""
Knowledge Base Endpoints.

Upload of reference documents (PDF, EPUB, DOCX, TXT) and polling of their
processing status.
"""

from typing import Optional

from fastapi import APIRouter, File, UploadFile, status
from fastapi.responses import JSONResponse

from medprep_ai.core.logging_config import get_logger
from medprep_ai.server.services.deps import CurrentUserDep, SessionDep
from medprep_ai.server.services.knowledge_base import (
    DocumentTooLargeError,
    KnowledgeBaseService,
    UnsupportedDocumentError,
)

logger = get_logger(__name__)

router = APIRouter()

NO_FILE_MESSAGE = 'Aucun fichier fourni. Utilisez le champ "document".'
UPLOAD_ACCEPTED_MESSAGE = "Document reçu, traitement en cours"


@router.post(
    "/upload",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload Document",
    description="Store a document in the knowledge base. Text files are extracted at once, other formats are queued.",
    response_description="The document id and the endpoint to poll for its processing status.",
    responses={
        202: {"description": "Document accepted"},
        400: {"description": "Missing file or unsupported format"},
        401: {"description": "Not authenticated"},
        413: {"description": "File above the size limit"},
    },
)
async def upload_document(
    user: CurrentUserDep,
    session: SessionDep,
    document: Optional[UploadFile] = File(None, description="The file to upload."),
):
    """
    Upload a document.

    - **document**: Multipart file field, PDF, EPUB, DOCX or TXT.
    """
    if document is None or not document.filename:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"success": False, "error": NO_FILE_MESSAGE})

    content = await document.read()
    try:
        data = await KnowledgeBaseService(session).upload_document(document.filename, content, user.id)
    except UnsupportedDocumentError as e:
        logger.info(f"Rejected upload {document.filename}: unsupported type")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"success": False, "error": str(e)})
    except DocumentTooLargeError as e:
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, content={"success": False, "error": str(e)}
        )
    return {"success": True, "message": UPLOAD_ACCEPTED_MESSAGE, "data": data}


@router.get(
    "/{document_id}/status",
    summary="Document Processing Status",
    description="Processing progress of an uploaded document.",
    responses={
        200: {"description": "Status found"},
        404: {"description": "Document not found"},
    },
)
async def document_status(document_id: str, user: CurrentUserDep, session: SessionDep):
    data = await KnowledgeBaseService(session).get_processing_status(document_id)
    if data is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content={"success": False, "error": "Document introuvable"}
        )
    return {"success": True, "data": data}
