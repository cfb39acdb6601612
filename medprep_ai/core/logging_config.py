"""
Logging Configuration Module.

This module provides centralized logging configuration for the MedPrep AI backend.
It sets up structured logging with different levels for different modules and environments.

Features:
- Configurable log levels per module
- Console and file logging
- Structured logging with JSON format support
- Quieter defaults for SQLAlchemy, httpx, uvicorn and the Stripe SDK
"""

import logging
import logging.config
import os
from pathlib import Path
from typing import Optional


def _get_logging_config():
    """Get logging configuration from settings model.

    This function is used to defer settings import until needed,
    avoiding circular imports during module initialization.
    """
    try:
        from medprep_ai.server.core.config import settings

        return {
            "log_level": settings.log_level.upper(),
            "log_format": os.getenv("LOG_FORMAT", "detailed"),
            "log_file_dir": os.getenv("LOG_FILE_DIR", "logs"),
            "enable_file_logging": os.getenv("ENABLE_FILE_LOGGING", "false").lower() in ("true", "1", "yes"),
        }
    except Exception:
        # Fallback to environment variables if settings not available
        return {
            "log_level": os.getenv("MEDPREP_LOG_LEVEL", "INFO").upper(),
            "log_format": os.getenv("LOG_FORMAT", "detailed"),
            "log_file_dir": os.getenv("LOG_FILE_DIR", "logs"),
            "enable_file_logging": os.getenv("ENABLE_FILE_LOGGING", "false").lower() in ("true", "1", "yes"),
        }


_config = _get_logging_config()
LOG_LEVEL = _config["log_level"]
LOG_FORMAT = _config["log_format"]
LOG_FILE_DIR = _config["log_file_dir"]
ENABLE_FILE_LOGGING = _config["enable_file_logging"]

if ENABLE_FILE_LOGGING:
    Path(LOG_FILE_DIR).mkdir(parents=True, exist_ok=True)


SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(funcName)s() - %(message)s"

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"module": "%(filename)s", "function": "%(funcName)s", "line": %(lineno)d, '
    '"message": "%(message)s"}'
)

_FORMATS = {
    "json": JSON_FORMAT,
    "simple": SIMPLE_FORMAT,
    "detailed": DETAILED_FORMAT,
}


MODULE_LOG_LEVELS = {
    # Application modules
    "medprep_ai.core": "INFO",
    "medprep_ai.core.database": "INFO",
    "medprep_ai.server": "INFO",
    "medprep_ai.server.api": "DEBUG",
    "medprep_ai.server.services": "DEBUG",
    "medprep_ai.server.services.stripe": "INFO",
    "medprep_ai.server.hooks": "INFO",
    # Third-party libraries (reduce noise)
    "sqlalchemy": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "httpx": "WARNING",
    "asyncio": "WARNING",
    "stripe": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
}


def resolve_format(log_format: Optional[str]) -> str:
    """Return the format string for ``simple``, ``detailed`` or ``json``.

    Unknown names fall back to the detailed format.
    """
    return _FORMATS.get((log_format or LOG_FORMAT).lower(), DETAILED_FORMAT)


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    enable_file: bool = True,
) -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Override default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Override default format (simple, detailed, json)
        enable_file: Whether to enable file logging
    """
    level = (log_level or LOG_LEVEL).upper()
    fmt = log_format or LOG_FORMAT

    formatter = logging.Formatter(resolve_format(fmt), datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all levels, filter at handler level

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_logging = enable_file and ENABLE_FILE_LOGGING
    if file_logging:
        log_file = Path(LOG_FILE_DIR) / "medprep_ai.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for module_name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(module_name).setLevel(module_level)

    root_logger.info(f"Logging configured: level={level}, format={fmt}, file_logging={file_logging}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The module name (typically __name__)

    Returns:
        A configured logger instance
    """
    return logging.getLogger(name)


setup_logging()
