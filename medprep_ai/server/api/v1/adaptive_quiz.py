"""
Adaptive Quiz Endpoints.

Generation of personalised quizzes from the student's performance, the
sessions they open, the results they submit and the eligibility checks that
gate generation.

Typed adaptive quiz errors raised here are turned into the client error
format by the registered exception handler.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from medprep_ai.core.database.entities.users import User
from medprep_ai.core.database.repositories import AdaptiveQuizSessionRepository, CategoryRepository
from medprep_ai.core.logging_config import get_logger
from medprep_ai.server.schemas import AdaptiveResultSave, AdaptiveSessionCreate, AdaptiveSessionSubmit
from medprep_ai.server.services.adaptive_quiz import AdaptiveQuizService, serialize_result, serialize_session
from medprep_ai.server.services.adaptive_quiz_error_manager import AdaptiveQuizErrorManager
from medprep_ai.server.services.deps import AdminUserDep, CurrentUserDep, OptionalUserDep, SessionDep
from medprep_ai.server.services.eligibility import EligibilityService
from medprep_ai.server.services.errors import AdaptiveQuizErrorType as E
from medprep_ai.server.services.errors import AdaptiveQuizException, get_http_status_for_error

logger = get_logger(__name__)

router = APIRouter()

AUTH_REQUIRED_REASON = "Authentification requise pour accéder à cette fonctionnalité"
TECHNICAL_ERROR_REASON = "Erreur technique lors de la vérification des prérequis"


def _request_info(request: Request) -> dict:
    return {
        "method": request.method,
        "path": request.url.path,
        "userAgent": request.headers.get("user-agent"),
    }


def _error_response(payload: dict) -> JSONResponse:
    return JSONResponse(
        status_code=get_http_status_for_error(payload["error"]["type"]),
        content=jsonable_encoder(payload),
    )


def _ensure_access(owner_id: str, user: User) -> None:
    if owner_id != user.id and not user.is_admin:
        raise AdaptiveQuizException(E.UNAUTHORIZED_ACCESS)


def _eligibility_summary(eligibility: dict, categories_available: int) -> dict:
    requirements = eligibility.get("requirements")
    return {
        "canGenerate": eligibility["canGenerate"],
        "reason": eligibility.get("reason"),
        "requirements": (
            {
                "minimumQuizzes": requirements["minimumQuizzes"]["required"],
                "currentQuizzes": requirements["minimumQuizzes"]["current"],
                "levelSet": requirements["studentLevel"]["satisfied"],
                "categoriesAvailable": categories_available,
            }
            if requirements
            else None
        ),
        "nextAvailableAt": eligibility.get("nextAvailableAt"),
        "suggestedActions": eligibility.get("suggestions") or [],
    }


@router.post(
    "/generate",
    summary="Generate Adaptive Quiz",
    description="Build a quiz targeting the caller's weakest and strongest categories and open a session for it.",
    response_description="The session id, its questions and the analytics it is based on.",
    responses={
        200: {"description": "Quiz generated"},
        400: {"description": "Prerequisites not met"},
        429: {"description": "Daily limit reached or cooldown active"},
    },
)
async def generate_adaptive_quiz(request: Request, user: CurrentUserDep, session: SessionDep):
    """
    Generate an adaptive quiz.

    Failures are recorded in the audit log and answered with a recovery
    strategy the client can offer to the student.
    """
    user_id = user.id
    try:
        data = await AdaptiveQuizService(session).generate_adaptive_quiz(user_id)
    except Exception as e:
        await session.rollback()
        payload = await AdaptiveQuizErrorManager(session).handle_quiz_generation_error(
            e, user_id, {"request": _request_info(request)}
        )
        return _error_response(payload)
    return {"success": True, "data": data}


@router.post(
    "/sessions",
    status_code=status.HTTP_201_CREATED,
    summary="Create Adaptive Session",
    description="Open an adaptive quiz session from an explicit list of questions.",
    response_description="The public session id.",
    responses={
        201: {"description": "Session created"},
        400: {"description": "Empty question list"},
        429: {"description": "Daily limit reached or cooldown active"},
    },
)
async def create_session(body: AdaptiveSessionCreate, user: CurrentUserDep, session: SessionDep):
    """
    Create a session.

    - **questions**: Question ids, required and non empty.
    - **studentLevel**: Defaults to PASS.
    - **expiresAt**: Defaults to 24 hours from now.
    """
    quiz_session = await AdaptiveQuizService(session).create_session(user.id, body.model_dump())
    return {"success": True, "sessionId": quiz_session.session_id}


@router.get(
    "/sessions/{session_id}",
    summary="Get Adaptive Session",
    description="Retrieve a session by its public id. Only its owner and administrators may read it.",
    responses={
        200: {"description": "Session found"},
        403: {"description": "Session owned by another user"},
        404: {"description": "Session not found"},
    },
)
async def get_session_by_id(session_id: str, user: CurrentUserDep, session: SessionDep):
    quiz_session = await AdaptiveQuizSessionRepository(session).get_by_session_id(session_id)
    if quiz_session is None:
        raise AdaptiveQuizException(E.SESSION_NOT_FOUND)
    _ensure_access(quiz_session.user_id, user)
    return {"success": True, "data": serialize_session(quiz_session)}


@router.post(
    "/sessions/{session_id}/submit",
    summary="Submit Adaptive Session",
    description="Score the answers of an active session and store the result with recommendations.",
    response_description="The stored result.",
    responses={
        200: {"description": "Result stored"},
        400: {"description": "Session expired or already completed"},
        403: {"description": "Session owned by another user"},
        404: {"description": "Session not found"},
    },
)
async def submit_session(
    session_id: str,
    body: AdaptiveSessionSubmit,
    request: Request,
    user: CurrentUserDep,
    session: SessionDep,
):
    """
    Submit the answers of a session.

    - **answers**: Chosen option id (or ids) per question id. Unanswered
      questions are not scored.
    - **timeSpent**: Seconds spent answering.
    """
    user_id = user.id
    quiz_session = await AdaptiveQuizSessionRepository(session).get_by_session_id(session_id)
    if quiz_session is not None:
        _ensure_access(quiz_session.user_id, user)

    try:
        result = await AdaptiveQuizService(session).save_adaptive_quiz_results(
            session_id, body.answers, body.timeSpent
        )
    except Exception as e:
        await session.rollback()
        payload = await AdaptiveQuizErrorManager(session).handle_result_submission_error(
            e, user_id, session_id, {"request": _request_info(request)}
        )
        return _error_response(payload)
    return {"success": True, "data": {"sessionId": session_id, **serialize_result(result)}}


@router.post(
    "/results",
    status_code=status.HTTP_201_CREATED,
    summary="Save Adaptive Result",
    description="Store a result computed by the client and mark its session completed.",
    response_description="The id of the stored result.",
    responses={
        201: {"description": "Result stored"},
        400: {"description": "Missing sessionId"},
        404: {"description": "Session not found"},
    },
)
async def save_result(body: AdaptiveResultSave, user: CurrentUserDep, session: SessionDep):
    """
    Save a result.

    ``timeSpent`` is derived from ``totalTimeMs`` when it is given.
    """
    if not body.sessionId:
        raise AdaptiveQuizException(E.VALIDATION_ERROR, {"message": "sessionId is required"})
    result = await AdaptiveQuizService(session).save_result(user.id, body.model_dump())
    return {"success": True, "resultId": result.id}


@router.get(
    "/results/{session_id}",
    summary="Get Adaptive Result",
    description="Retrieve the result of a session. Only its owner and administrators may read it.",
    responses={
        200: {"description": "Result found"},
        403: {"description": "Result owned by another user"},
        404: {"description": "No result for this session"},
    },
)
async def get_result(session_id: str, user: CurrentUserDep, session: SessionDep):
    result = await AdaptiveQuizService(session).get_result_for_session(session_id)
    if result is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "error": "No result found for this session"},
        )
    _ensure_access(result.user_id, user)
    return {"success": True, "data": {"sessionId": session_id, **serialize_result(result)}}


@router.get(
    "/history",
    summary="Adaptive Quiz History",
    description="Page through the caller's adaptive sessions, newest first, each with its result.",
)
async def get_history(
    user: CurrentUserDep,
    session: SessionDep,
    page: int = Query(1, ge=1, description="Page number, starting at 1."),
    limit: int = Query(10, ge=1, le=100, description="Sessions per page."),
):
    return {"success": True, "data": await AdaptiveQuizService(session).get_history(user.id, page, limit)}


@router.get(
    "/can-generate",
    summary="Check Eligibility",
    description="Tell whether the caller may generate an adaptive quiz now, and what to do otherwise.",
    responses={
        200: {"description": "Eligibility computed"},
        401: {"description": "Not authenticated"},
    },
)
async def can_generate(user: OptionalUserDep, session: SessionDep):
    if user is None:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"canGenerate": False, "reason": AUTH_REQUIRED_REASON},
        )

    try:
        logger.info(f"Checking adaptive quiz eligibility for user {user.id}")
        eligibility = await EligibilityService(session).check_eligibility(user.id)
        categories_available = await CategoryRepository(session).count()
    except Exception as e:
        logger.error(f"Error checking eligibility for user {user.id}: {e}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "canGenerate": False,
                "reason": TECHNICAL_ERROR_REASON,
                "error": {
                    "type": E.TECHNICAL_ERROR.value,
                    "message": "Une erreur est survenue lors de la vérification. Veuillez réessayer.",
                },
            },
        )
    return _eligibility_summary(eligibility, categories_available)


@router.get(
    "/eligibility-details",
    summary="Eligibility Details",
    description="Eligibility summary together with the number of categories available.",
    responses={
        200: {"description": "Eligibility computed"},
        401: {"description": "Not authenticated"},
    },
)
async def eligibility_details(user: CurrentUserDep, session: SessionDep):
    eligibility = await EligibilityService(session).check_eligibility(user.id)
    try:
        categories_available = await CategoryRepository(session).count()
    except Exception as e:
        logger.warning(f"Failed to count categories: {e}")
        categories_available = 0
    return {"success": True, "data": _eligibility_summary(eligibility, categories_available)}


@router.get(
    "/error-metrics",
    summary="Adaptive Quiz Error Metrics",
    description="Administrators only: aggregate the adaptive quiz errors of the last hour, day or week.",
)
async def error_metrics(
    user: AdminUserDep,
    session: SessionDep,
    timeframe: str = Query("day", pattern="^(hour|day|week)$"),
):
    return {"success": True, "data": await AdaptiveQuizErrorManager(session).get_error_metrics(timeframe)}
