"""
Adaptive quiz entity models.

- AdaptiveQuizSession: a generated quiz waiting for answers (expires after 24h)
- AdaptiveQuizResult: scored outcome of a session, with per-category results
  and personalised recommendations
- UserPerformance: stored snapshot of a student's performance analytics
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import JSON, Field

from ..base import DocumentBase, utc_now


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class AdaptiveQuizSession(DocumentBase, table=True):
    """Generated adaptive quiz.

    ``session_id`` is the public identifier handed to clients; ``id`` stays
    internal.

    Table: mp_adaptive_quiz_sessions
    """

    __tablename__ = "mp_adaptive_quiz_sessions"

    session_id: str = Field(max_length=128, unique=True, index=True)
    user_id: str = Field(foreign_key="mp_users.id", max_length=64, index=True)
    question_ids: List[str] = Field(default_factory=list, sa_type=JSON)
    status: str = Field(default=SessionStatus.ACTIVE.value, max_length=16, index=True)

    # Analytics snapshot the quiz was built from
    based_on_analytics: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    question_distribution: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    config: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)

    student_level: str = Field(default="PASS", max_length=16)
    expires_at: Optional[datetime] = Field(default=None)
    questions_count: int = Field(default=0)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or utc_now())

    def __repr__(self) -> str:
        return f"AdaptiveQuizSession(session_id={self.session_id}, user_id={self.user_id}, status={self.status})"


class AdaptiveQuizResult(DocumentBase, table=True):
    """Scored outcome of an adaptive session.

    Table: mp_adaptive_quiz_results
    """

    __tablename__ = "mp_adaptive_quiz_results"

    session_id: str = Field(foreign_key="mp_adaptive_quiz_sessions.id", max_length=64, index=True)
    user_id: str = Field(foreign_key="mp_users.id", max_length=64, index=True)

    overall_score: float = Field(default=0)
    max_score: float = Field(default=0)
    success_rate: float = Field(default=0)
    time_spent: int = Field(default=0, description="Seconds spent answering")
    completed_at: datetime = Field(default_factory=utc_now, index=True)

    category_results: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    recommendations: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    progress_comparison: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    improvement_areas: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    strength_areas: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    next_adaptive_quiz_available_at: Optional[datetime] = Field(default=None)

    def __repr__(self) -> str:
        return f"AdaptiveQuizResult(id={self.id}, session_id={self.session_id}, success_rate={self.success_rate})"


class UserPerformance(DocumentBase, table=True):
    """Stored performance analytics of one student.

    Table: mp_user_performances
    """

    __tablename__ = "mp_user_performances"

    user_id: str = Field(foreign_key="mp_users.id", max_length=64, unique=True, index=True)
    overall_success_rate: float = Field(default=0)
    total_quizzes_taken: int = Field(default=0)
    total_questions_answered: int = Field(default=0)
    category_performances: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    weakest_categories: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    strongest_categories: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    analysis_date: datetime = Field(default_factory=utc_now)

    def __repr__(self) -> str:
        return f"UserPerformance(user_id={self.user_id}, overall_success_rate={self.overall_success_rate})"
