"""
Request-scoped context.

The authentication dependency stores the caller here so that lower layers
(the audit hook in particular) can attribute changes without receiving the
user explicitly.
"""

from contextvars import ContextVar
from typing import Optional

current_user_id: ContextVar[Optional[str]] = ContextVar("current_user_id", default=None)
