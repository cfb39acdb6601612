"""
Core utilities and configuration for MedPrep AI.

This package provides core functionality including logging configuration,
monitoring, and the database layer (entities and repositories).
"""

from medprep_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
