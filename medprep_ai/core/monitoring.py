"""
Monitoring and Tracing Configuration Module.

This module wires the backend to Pydantic Logfire for tracing and
structured events:
- API endpoint tracing and request latency
- Database operation monitoring
- AI quiz generation calls
- Stripe webhook processing
- Error tracking

Every helper degrades to a debug log line when Logfire is not configured,
so callers never need to guard them.
"""

import logging
import os
from typing import Any, Optional

from fastapi import FastAPI

logger = logging.getLogger(__name__)

LOGFIRE_ENABLED = os.getenv("LOGFIRE_ENABLED", "false").lower() in ("true", "1", "yes")
LOGFIRE_TOKEN = os.getenv("LOGFIRE_TOKEN", "")
LOGFIRE_PROJECT_NAME = os.getenv("LOGFIRE_PROJECT_NAME", "medprep-ai")
LOGFIRE_ENVIRONMENT = os.getenv("LOGFIRE_ENVIRONMENT", "development")
LOGFIRE_SERVICE_NAME = os.getenv("LOGFIRE_SERVICE_NAME", "medprep-ai-server")
LOGFIRE_SERVICE_VERSION = os.getenv("LOGFIRE_SERVICE_VERSION", "1.0.0")

LOGFIRE_SAMPLE_RATE = float(os.getenv("LOGFIRE_SAMPLE_RATE", "1.0"))

LOGFIRE_TRACE_PYDANTIC_AI = os.getenv("LOGFIRE_TRACE_PYDANTIC_AI", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_SQLALCHEMY = os.getenv("LOGFIRE_TRACE_SQLALCHEMY", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_HTTPX = os.getenv("LOGFIRE_TRACE_HTTPX", "true").lower() in ("true", "1", "yes")
LOGFIRE_TRACE_FASTAPI = os.getenv("LOGFIRE_TRACE_FASTAPI", "true").lower() in ("true", "1", "yes")


def initialize_logfire(app: FastAPI | None = None) -> bool:
    """
    Initialize Logfire for monitoring and tracing.

    Instruments pydantic-ai, SQLAlchemy, httpx and (when ``app`` is given)
    FastAPI. Each instrumentation failing on its own only produces a warning.

    Args:
        app: FastAPI application instance for endpoint tracing (optional).

    Returns:
        True when Logfire was configured.
    """
    if not LOGFIRE_ENABLED:
        logger.info("Logfire monitoring is disabled. Set LOGFIRE_ENABLED=true to enable.")
        return False

    if not LOGFIRE_TOKEN:
        logger.warning("Logfire is enabled but LOGFIRE_TOKEN is not set. Monitoring will not work.")
        return False

    try:
        import logfire

        logfire.configure(
            token=LOGFIRE_TOKEN,
            service_name=LOGFIRE_SERVICE_NAME,
            service_version=LOGFIRE_SERVICE_VERSION,
            environment=LOGFIRE_ENVIRONMENT,
            sampling=logfire.SamplingOptions(head=LOGFIRE_SAMPLE_RATE),
        )

        instrumentations = [
            (LOGFIRE_TRACE_PYDANTIC_AI, "Pydantic AI", lambda: logfire.instrument_pydantic_ai()),
            (LOGFIRE_TRACE_SQLALCHEMY, "SQLAlchemy", lambda: logfire.instrument_sqlalchemy()),
            (LOGFIRE_TRACE_HTTPX, "HTTPX", lambda: logfire.instrument_httpx()),
        ]
        if app is not None:
            instrumentations.append((LOGFIRE_TRACE_FASTAPI, "FastAPI", lambda: logfire.instrument_fastapi(app=app)))

        for enabled, name, instrument in instrumentations:
            if not enabled:
                continue
            try:
                instrument()
                logger.info(f"Logfire: {name} instrumentation enabled")
            except Exception as e:
                logger.warning(f"Failed to instrument {name}: {e}")

        logger.info(
            f"Logfire monitoring initialized: project={LOGFIRE_PROJECT_NAME}, "
            f"environment={LOGFIRE_ENVIRONMENT}, service={LOGFIRE_SERVICE_NAME}"
        )
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}", exc_info=True)
        return False


def log_api_request(method: str, path: str, status_code: int, duration_ms: float) -> None:
    """
    Log an API request with performance metrics.

    Args:
        method: HTTP method
        path: Request path
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
    """
    try:
        import logfire

        logfire.info(
            "API request completed",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms,
        )
    except Exception:
        logger.debug(f"Could not log API request to Logfire: {method} {path}")


def log_ai_generation(model: str, question_count: int, attempt: int, success: bool) -> None:
    """Record one AI quiz generation attempt."""
    try:
        import logfire

        logfire.info(
            "AI quiz generation attempt",
            model=model,
            question_count=question_count,
            attempt=attempt,
            success=success,
        )
    except Exception:
        logger.debug(f"Could not log AI generation to Logfire: model={model}")


def log_webhook_event(event_id: str, event_type: str, success: bool, error: Optional[str] = None) -> None:
    """Record the outcome of a processed Stripe webhook event."""
    try:
        import logfire

        logfire.info(
            "Stripe webhook processed",
            event_id=event_id,
            event_type=event_type,
            success=success,
            error=error,
        )
    except Exception:
        logger.debug(f"Could not log webhook event to Logfire: {event_type}")


def log_error(error_type: str, error_message: str, context: Optional[dict[str, Any]] = None) -> None:
    """
    Log an error with context for debugging.

    Args:
        error_type: Type of error
        error_message: Error message
        context: Additional context dictionary
    """
    try:
        import logfire

        logfire.error(
            "{error_type}: {error_message}",
            error_type=error_type,
            error_message=error_message,
            **(context or {}),
        )
    except Exception:
        logger.debug(f"Could not log error to Logfire: {error_type}")
