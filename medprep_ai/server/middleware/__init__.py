"""
Middleware modules for the MedPrep AI server.
"""

from .logfire_middleware import LogfireMiddleware

__all__ = ["LogfireMiddleware"]
