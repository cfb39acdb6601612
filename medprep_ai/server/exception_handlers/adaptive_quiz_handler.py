"""
Exception handlers for typed service errors.

Adaptive quiz errors answer with the client error format and the status of
their code; the other service errors carry their own status.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from medprep_ai.core.logging_config import get_logger
from medprep_ai.server.hooks.rate_limit import RateLimitExceeded
from medprep_ai.server.services.ai_quiz_errors import AIQuizGenerationError
from medprep_ai.server.services.errors import AdaptiveQuizException, ErrorHandlingService, get_http_status_for_error
from medprep_ai.server.services.quiz_submission import QuizNotFoundError
from medprep_ai.server.services.stripe import StripeConfigurationError, StripeServiceError

logger = get_logger(__name__)


async def adaptive_quiz_exception_handler(request: Request, exc: AdaptiveQuizException) -> JSONResponse:
    logger.info(f"Adaptive quiz error {exc.error_type} on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=get_http_status_for_error(exc.error_type),
        content=ErrorHandlingService.map_backend_error_to_frontend(exc),
    )


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    error = AdaptiveQuizException(exc.reason, {"value": exc.value})
    return await adaptive_quiz_exception_handler(request, error)


async def quiz_not_found_handler(request: Request, exc: QuizNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"message": str(exc)})


async def stripe_service_error_handler(request: Request, exc: StripeServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"Stripe error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def stripe_configuration_error_handler(request: Request, exc: StripeConfigurationError) -> JSONResponse:
    logger.error(f"Stripe is not configured: {exc}")
    return JSONResponse(status_code=503, content={"success": False, "error": "Paiement indisponible", "details": str(exc)})


async def ai_quiz_generation_error_handler(request: Request, exc: AIQuizGenerationError) -> JSONResponse:
    logger.warning(f"AI quiz error {exc.error.type.value} on {request.url.path}")
    return JSONResponse(
        status_code=400 if exc.operation == "config" else 502,
        content={"success": False, "error": exc.error.model_dump(by_alias=True, mode="json")},
    )
