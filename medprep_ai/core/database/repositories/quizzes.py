"""
Quiz, question and submission repositories.

This module provides data access for the question bank (including the
level and category filters used by adaptive selection) and for graded
quiz submissions.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from ..entities.courses import StudentLevel
from ..entities.quizzes import Question, Quiz, QuizSubmission
from .base import SQLModelRepository


def _level_condition(level: Optional[str]):
    """Questions targeting ``level`` or both levels."""
    return or_(
        Question.student_level == (level or StudentLevel.BOTH.value),
        Question.student_level == StudentLevel.BOTH.value,
    )


class QuizRepository(SQLModelRepository[Quiz]):
    """Repository for quiz data access operations using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Quiz)


class QuestionRepository(SQLModelRepository[Question]):
    """Repository for question bank access using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Question)

    async def get_many(self, question_ids: Iterable[str]) -> List[Question]:
        """Load several questions, keeping the order of ``question_ids``.

        Unknown ids are skipped.
        """
        ids = [str(question_id) for question_id in question_ids]
        if not ids:
            return []
        result = await self.session.execute(select(Question).where(col(Question.id).in_(ids)))
        by_id = {question.id: question for question in result.scalars().all()}
        return [by_id[question_id] for question_id in ids if question_id in by_id]

    async def find_for_selection(
        self,
        category_ids: Sequence[str],
        student_level: str,
        exclude_ids: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> List[Question]:
        """Candidate questions of the given categories at the student's level.

        Args:
            category_ids: Categories to draw from
            student_level: ``PASS`` or ``LAS``; ``both`` questions always match
            exclude_ids: Question ids to leave out
            limit: Maximum number of candidates

        Returns:
            Matching questions
        """
        if not category_ids:
            return []
        stmt = select(Question).where(col(Question.category_id).in_(list(category_ids)), _level_condition(student_level))
        if exclude_ids:
            stmt = stmt.where(col(Question.id).not_in(list(exclude_ids)))
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_available(
        self,
        student_level: Optional[str],
        category_id: Optional[str] = None,
        exclude_ids: Sequence[str] = (),
    ) -> int:
        """Count questions usable at ``student_level``, optionally within one category."""
        conditions = [_level_condition(student_level)]
        if category_id is not None:
            conditions.append(Question.category_id == category_id)
        if exclude_ids:
            conditions.append(col(Question.id).not_in(list(exclude_ids)))
        return await self.count(*conditions)


class QuizSubmissionRepository(SQLModelRepository[QuizSubmission]):
    """Repository for graded quiz submissions using SQLModel."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, QuizSubmission)

    async def list_scored_for_student(self, student_id: str, limit: int = 1000) -> List[QuizSubmission]:
        """Submissions of a student carrying a non-negative final score, newest first."""
        stmt = (
            select(QuizSubmission)
            .where(
                QuizSubmission.student_id == student_id,
                col(QuizSubmission.final_score).is_not(None),
                col(QuizSubmission.final_score) >= 0,
            )
            .order_by(col(QuizSubmission.submission_date).desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_scored_for_student(self, student_id: str) -> int:
        return await self.count(
            QuizSubmission.student_id == student_id,
            col(QuizSubmission.final_score).is_not(None),
            col(QuizSubmission.final_score) >= 0,
        )
