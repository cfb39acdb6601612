"""
Global Exception Handler for FastAPI Application.

Catches every exception no other handler claimed, logs it with the request
context and answers with an error id clients can quote when reporting it.
"""

import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from medprep_ai.core.logging_config import get_logger
from medprep_ai.core.monitoring import log_error
from medprep_ai.server.hooks.rate_limit import RateLimitExceeded
from medprep_ai.server.services.ai_quiz_errors import AIQuizGenerationError
from medprep_ai.server.services.errors import AdaptiveQuizException
from medprep_ai.server.services.quiz_submission import QuizNotFoundError
from medprep_ai.server.services.stripe import StripeConfigurationError, StripeServiceError

from .adaptive_quiz_handler import (
    adaptive_quiz_exception_handler,
    ai_quiz_generation_error_handler,
    quiz_not_found_handler,
    rate_limit_exception_handler,
    stripe_configuration_error_handler,
    stripe_service_error_handler,
)

logger = get_logger(__name__)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log an unhandled exception and answer 500.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with ``detail``, ``error_id`` and ``error_type``
    """
    error_id = id(exc)

    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )
    log_error(type(exc).__name__, str(exc), {"error_id": error_id, "path": request.url.path})

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(AdaptiveQuizException, adaptive_quiz_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(QuizNotFoundError, quiz_not_found_handler)
    app.add_exception_handler(StripeServiceError, stripe_service_error_handler)
    app.add_exception_handler(StripeConfigurationError, stripe_configuration_error_handler)
    app.add_exception_handler(AIQuizGenerationError, ai_quiz_generation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
