"""
Audit trail of data changes.

Every flush of a row whose model sets ``__audit_collection__`` adds an
AuditLog entry to the same flush: ``create`` and ``update`` entries carry
``{before, after}`` snapshots and ``delete`` entries the removed document.
The acting user comes from the request context.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.audit_logs import AuditAction, AuditLog
from medprep_ai.server.core.context import current_user_id

logger = logging.getLogger(__name__)


def _collection_of(obj: Any) -> Optional[str]:
    if isinstance(obj, AuditLog):
        return None
    return getattr(type(obj), "__audit_collection__", None)


def snapshot(obj: Any) -> Dict[str, Any]:
    """Current column values of a row, JSON safe."""
    mapper = inspect(obj).mapper
    return to_jsonable_python({attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs})


def previous_snapshot(obj: Any) -> Dict[str, Any]:
    """Column values of a dirty row as they were before the pending changes."""
    state = inspect(obj)
    values: Dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            values[attr.key] = history.deleted[0]
        elif history.added:
            values[attr.key] = None
        else:
            values[attr.key] = getattr(obj, attr.key)
    return to_jsonable_python(values)


def _entry(action: AuditAction, collection: str, obj: Any, before, after) -> AuditLog:
    return AuditLog(
        user_id=current_user_id.get(),
        action=action.value,
        collection=collection,
        document_id=str(obj.id),
        diff={"before": before, "after": after},
        timestamp=utc_now(),
    )


def audit_before_flush(session: Session, flush_context, instances) -> None:
    entries = []
    for obj in session.new:
        collection = _collection_of(obj)
        if collection:
            entries.append(_entry(AuditAction.CREATE, collection, obj, None, snapshot(obj)))

    for obj in session.dirty:
        collection = _collection_of(obj)
        if collection and session.is_modified(obj, include_collections=False):
            entries.append(_entry(AuditAction.UPDATE, collection, obj, previous_snapshot(obj), snapshot(obj)))

    for obj in session.deleted:
        collection = _collection_of(obj)
        if collection:
            entries.append(_entry(AuditAction.DELETE, collection, obj, snapshot(obj), None))

    for entry in entries:
        logger.debug(f"Audit {entry.action} on {entry.collection}/{entry.document_id}")
        session.add(entry)


def register_audit_hooks() -> None:
    """Attach the audit listener to every ORM session (idempotent)."""
    if not event.contains(Session, "before_flush", audit_before_flush):
        event.listen(Session, "before_flush", audit_before_flush)
