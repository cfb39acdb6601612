"""
AI Quiz Endpoints.

Generation of complete quizzes by a language model, for administrators and
teachers, and pre-validation of a generation configuration.
"""

from fastapi import APIRouter

from medprep_ai.server.schemas import AIQuizGenerationConfig
from medprep_ai.server.services.ai_quiz_generation import AIQuizGenerationService
from medprep_ai.server.services.ai_quiz_validation import AIQuizValidationService
from medprep_ai.server.services.deps import QuizAuthorDep, SessionDep

router = APIRouter()


@router.post(
    "/generate",
    summary="Generate AI Quiz",
    description="Generate a quiz and its questions with the configured language model and store them.",
    response_description="The stored quiz id and its question ids.",
    responses={
        200: {"description": "Quiz generated and stored"},
        400: {"description": "Invalid generation configuration"},
        403: {"description": "Caller is neither administrator nor teacher"},
        502: {"description": "The model failed after every retry"},
    },
)
async def generate_ai_quiz(body: AIQuizGenerationConfig, user: QuizAuthorDep, session: SessionDep):
    """
    Generate an AI quiz.

    - **subject**: Medical subject, 10 to 200 characters.
    - **categoryId**: Existing category of the questions.
    - **studentLevel**: PASS, LAS or both.
    - **questionCount**: 5 to 20 questions.
    """
    return await AIQuizGenerationService(session).generate_quiz(body.to_config(), user.id)


@router.post(
    "/validate-config",
    summary="Validate AI Quiz Configuration",
    description="Check a generation configuration without calling the model.",
    response_description="Errors, warnings and the sanitized configuration.",
)
async def validate_config(body: AIQuizGenerationConfig, user: QuizAuthorDep, session: SessionDep):
    validation = await AIQuizValidationService(session).validate_generation_config(
        {**body.to_config(), "userId": user.id}
    )
    return {"success": True, "data": validation}
