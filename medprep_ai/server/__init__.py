"""
MedPrep AI Server Package.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Settings, constants and request context.
    hooks: Side effects run around persistence (audit, rate limits, subscription sync).
    services: Business logic and service layer.
    exception_handlers: Error to HTTP response conversion.
    middleware: Request tracing.
"""
