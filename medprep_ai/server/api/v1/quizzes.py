"""
Classic Quiz Endpoints.

Submission and grading of the answers to a published quiz.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from medprep_ai.core.logging_config import get_logger
from medprep_ai.server.schemas import QuizSubmit
from medprep_ai.server.services.deps import CurrentUserDep, SessionDep
from medprep_ai.server.services.quiz_submission import QuizNotFoundError, QuizSubmissionService

logger = get_logger(__name__)

router = APIRouter()

INVALID_REQUEST_MESSAGE = "Requête invalide. ID du quiz et réponses sont requis."
SUBMISSION_FAILED_MESSAGE = "Une erreur interne est survenue lors de la soumission."


@router.post(
    "/{quiz_id}/submit",
    summary="Submit Quiz",
    description="Grade the caller's answers to a quiz and store the submission.",
    response_description="The submission id and the score in percent.",
    responses={
        200: {"description": "Quiz graded"},
        400: {"description": "Missing answers"},
        401: {"description": "Not authenticated"},
        404: {"description": "Quiz not found or without questions"},
    },
)
async def submit_quiz(
    quiz_id: str,
    body: QuizSubmit,
    user: CurrentUserDep,
    session: SessionDep,
):
    """
    Submit a quiz.

    - **quiz_id**: The quiz being answered.
    - **answers**: ``{question, answer}`` pairs, the answer being an option id.
    """
    if not quiz_id or body.answers is None:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": INVALID_REQUEST_MESSAGE})

    user_id = user.id
    try:
        return await QuizSubmissionService(session).submit_quiz(
            quiz_id, user_id, [answer.model_dump() for answer in body.answers]
        )
    except QuizNotFoundError:
        raise
    except Exception as e:
        logger.error(f"Error submitting quiz {quiz_id} for user {user_id}: {e}", exc_info=True)
        await session.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"message": SUBMISSION_FAILED_MESSAGE}
        )
