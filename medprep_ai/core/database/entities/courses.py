"""
Course catalogue entity models.

Categories organise questions by subject (anatomy, physiology...) and carry
the adaptive settings used when building adaptive quizzes. Courses group
quizzes for a given study level.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from sqlmodel import JSON, Field

from ..base import DocumentBase


class StudentLevel(str, Enum):
    """Level a piece of content targets."""

    PASS = "PASS"
    LAS = "LAS"
    BOTH = "both"


class Category(DocumentBase, table=True):
    """Subject category.

    Table: mp_categories
    """

    __tablename__ = "mp_categories"
    __audit_collection__ = "categories"

    title: str = Field(max_length=255)
    slug: Optional[str] = Field(default=None, max_length=255, index=True)
    parent_category_id: Optional[str] = Field(default=None, foreign_key="mp_categories.id", max_length=64)
    level: str = Field(default=StudentLevel.BOTH.value, max_length=16)
    # isActive, minimumQuestions, weight
    adaptive_settings: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)

    def __repr__(self) -> str:
        return f"Category(id={self.id}, title={self.title})"


class Course(DocumentBase, table=True):
    """Course grouping quizzes for one study level.

    Table: mp_courses
    """

    __tablename__ = "mp_courses"
    __audit_collection__ = "courses"

    title: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    level: str = Field(default=StudentLevel.BOTH.value, max_length=16)
    author_id: Optional[str] = Field(default=None, foreign_key="mp_users.id", max_length=64)
    published: bool = Field(default=False)

    def __repr__(self) -> str:
        return f"Course(id={self.id}, title={self.title}, published={self.published})"
