"""
Base database models and utilities.

This module provides the foundational database components used across
all entities in the centralized database layer using SQLModel.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, Optional
from uuid import uuid4

from pydantic import ConfigDict
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention of every table)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid4().hex


class Base(SQLModel):
    """Base class for all SQLModel entities."""

    model_config = ConfigDict(arbitrary_types_allowed=True)


class DocumentBase(Base):
    """Common columns of every stored document.

    ``__audit_collection__`` names the collection slug written to the audit
    log; entities leaving it as ``None`` are not audited.
    """

    __audit_collection__: ClassVar[Optional[str]] = None

    id: str = Field(default_factory=new_id, primary_key=True, max_length=64)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_column_kwargs={"onupdate": utc_now})
