"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS,
request monitoring), registers the exception handlers and the ORM hooks, and
includes all API routers. It serves as the root of the web server.
"""

import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medprep_ai.core.database import async_session_maker, init_db
from medprep_ai.core.logging_config import get_logger, setup_logging
from medprep_ai.core.monitoring import initialize_logfire

from .api.v1 import (
    adaptive_quiz,
    ai_quiz,
    billing,
    health,
    knowledge_base,
    quizzes,
    rate_limit,
    subscriptions,
)
from .core import constant
from .core.config import settings
from .exception_handlers import setup_exception_handlers
from .hooks.audit import register_audit_hooks
from .middleware import LogfireMiddleware
from .services.stripe import run_retry_queue_loop

# Initialize logging
setup_logging()
logger = get_logger(__name__)


def _start_retry_queue_loop():
    stripe_settings = settings.stripe
    if not stripe_settings.secret_key or stripe_settings.retry_interval_seconds <= 0:
        logger.info("Webhook retry queue loop disabled")
        return None
    return asyncio.create_task(
        run_retry_queue_loop(async_session_maker, stripe_settings.retry_interval_seconds),
        name="stripe-webhook-retry-queue",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates the tables at startup and runs the Stripe webhook retry queue in
    the background until shutdown.
    """
    # Startup
    try:
        logger.info(f"Starting up {constant.PROJECT_NAME} Server...")
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    retry_task = _start_retry_queue_loop()

    yield

    # Shutdown
    logger.info(f"Shutting down {constant.PROJECT_NAME} Server...")
    if retry_task is not None:
        retry_task.cancel()
        with suppress(asyncio.CancelledError):
            await retry_task


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    MedPrep AI Server API

    This API provides the backend services of the MedPrep AI medical exam preparation platform.
    It supports classic and adaptive quizzes, AI quiz generation, the knowledge base and Stripe billing.
    """,
    version=constant.VERSION,
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=settings.cors.allow_methods,
    allow_headers=settings.cors.allow_headers,
)
app.add_middleware(LogfireMiddleware)

setup_exception_handlers(app)
register_audit_hooks()
initialize_logfire(app)


app.include_router(health.router, prefix=constant.API_V1_STR, tags=["health"])
app.include_router(quizzes.router, prefix=f"{constant.API_V1_STR}/quizzes", tags=["quizzes"])
app.include_router(adaptive_quiz.router, prefix=f"{constant.API_V1_STR}/adaptive-quiz", tags=["adaptive-quiz"])
app.include_router(rate_limit.router, prefix=f"{constant.API_V1_STR}/rate-limit", tags=["rate-limit"])
app.include_router(subscriptions.router, prefix=constant.API_V1_STR, tags=["subscriptions"])
app.include_router(billing.router, prefix=f"{constant.API_V1_STR}/stripe", tags=["stripe"])
app.include_router(ai_quiz.router, prefix=f"{constant.API_V1_STR}/ai-quiz", tags=["ai-quiz"])
app.include_router(knowledge_base.router, prefix=f"{constant.API_V1_STR}/knowledge-base", tags=["knowledge-base"])
