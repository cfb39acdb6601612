"""
Exception handlers for the MedPrep AI server.

This package contains custom exception handlers for the typed service errors
and the catch-all handler, plus a setup function registering them with the
FastAPI application.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
