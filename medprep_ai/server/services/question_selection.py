"""
Question selection engine for adaptive quizzes.

Draws questions from the student's weak and strong categories (70/30 split
by default) at the student's level, avoiding questions seen in the last
week, adapting the split to what the question bank can provide and
balancing difficulties.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.quizzes import Difficulty, Question
from medprep_ai.core.database.repositories import (
    AdaptiveQuizSessionRepository,
    CategoryRepository,
    QuestionRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_WEAK_PERCENTAGE = 0.7
DEFAULT_STRONG_PERCENTAGE = 0.3
DEFAULT_TOTAL_QUESTIONS = 7
RECENT_QUESTIONS_DAYS = 7
MIN_CANDIDATE_POOL = 50


class DifficultyDistribution(BaseModel):
    easy: int = 0
    medium: int = 0
    hard: int = 0

    @property
    def total(self) -> int:
        return self.easy + self.medium + self.hard


class SelectionCriteria(BaseModel):
    """What an adaptive quiz should be built from."""

    weak_categories: List[str] = Field(default_factory=list)
    strong_categories: List[str] = Field(default_factory=list)
    target_weak_questions: int = 0
    target_strong_questions: int = 0
    student_level: str = "PASS"
    exclude_question_ids: List[str] = Field(default_factory=list)
    difficulty_distribution: Optional[DifficultyDistribution] = None


class CategoryAvailability(BaseModel):
    category_id: str
    category_name: str
    available_questions: int
    requested_questions: int
    can_fulfill: bool
    type: str


@dataclass
class SelectionResult:
    questions: List[Question]
    weak_questions: int
    strong_questions: int
    category_breakdown: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_questions(self) -> int:
        return len(self.questions)


class QuestionSelectionEngine:
    def __init__(self, session: AsyncSession, rng: Optional[random.Random] = None):
        self.session = session
        self.questions = QuestionRepository(session)
        self.rng = rng or random.Random()

    async def select_adaptive_questions(self, criteria: SelectionCriteria) -> SelectionResult:
        """
        Select the questions of an adaptive quiz.

        Args:
            criteria: Categories, targets, level and exclusions

        Returns:
            The shuffled questions with the achieved weak/strong split
        """
        criteria = self.apply_distribution_rules(criteria)
        availability = await self.validate_question_availability(criteria)
        criteria = self.adjust_selection_for_availability(criteria, availability)

        weak = await self.select_questions_from_categories(
            criteria.weak_categories,
            criteria.target_weak_questions,
            criteria.student_level,
            criteria.exclude_question_ids,
        )
        # A category can rank both weak and strong; never serve a question twice.
        strong = await self.select_questions_from_categories(
            criteria.strong_categories,
            criteria.target_strong_questions,
            criteria.student_level,
            list(criteria.exclude_question_ids) + [q.id for q in weak],
        )

        selected = self.shuffle_questions(weak + strong)
        if criteria.difficulty_distribution is not None:
            selected = self.balance_by_difficulty(selected, criteria.difficulty_distribution)

        return SelectionResult(
            questions=selected,
            weak_questions=len(weak),
            strong_questions=len(strong),
            category_breakdown=await self._category_breakdown(weak, strong, criteria),
        )

    async def select_questions_from_categories(
        self,
        category_ids: Sequence[str],
        count: int,
        student_level: str,
        exclude_ids: Sequence[str] = (),
    ) -> List[Question]:
        """Randomly pick up to ``count`` questions of the given categories."""
        if not category_ids or count <= 0:
            return []
        candidates = await self.questions.find_for_selection(
            category_ids, student_level, exclude_ids=exclude_ids, limit=max(count * 3, MIN_CANDIDATE_POOL)
        )
        if not candidates:
            logger.warning(f"No questions available for categories: {', '.join(category_ids)}, level: {student_level}")
            return []
        return self.shuffle_questions(candidates)[:count]

    def shuffle_questions(self, questions: Sequence[Question]) -> List[Question]:
        """Fisher-Yates shuffle returning a new list."""
        shuffled = list(questions)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self.rng.randrange(i + 1)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    async def validate_question_availability(self, criteria: SelectionCriteria) -> List[CategoryAvailability]:
        availability: List[CategoryAvailability] = []
        groups = (
            ("weak", criteria.weak_categories, criteria.target_weak_questions),
            ("strong", criteria.strong_categories, criteria.target_strong_questions),
        )
        for kind, category_ids, target in groups:
            for category_id in category_ids:
                requested = math.ceil(target / len(category_ids))
                availability.append(
                    await self._check_category_availability(
                        category_id, requested, criteria.student_level, criteria.exclude_question_ids, kind
                    )
                )
        return availability

    def adjust_selection_for_availability(
        self, criteria: SelectionCriteria, availability: Sequence[CategoryAvailability]
    ) -> SelectionCriteria:
        """Drop empty categories and move any deficit between weak and strong."""
        weak = [a for a in availability if a.type == "weak"]
        strong = [a for a in availability if a.type == "strong"]
        weak_available = sum(a.available_questions for a in weak)
        strong_available = sum(a.available_questions for a in strong)

        target_weak = criteria.target_weak_questions
        target_strong = criteria.target_strong_questions

        if weak_available < target_weak:
            logger.warning(f"Only {weak_available} weak questions available, requested {target_weak}")
            deficit = target_weak - weak_available
            target_weak = weak_available
            extra_strong = min(deficit, strong_available - target_strong)
            if extra_strong > 0:
                target_strong += extra_strong

        if strong_available < target_strong:
            logger.warning(f"Only {strong_available} strong questions available, requested {target_strong}")
            deficit = target_strong - strong_available
            target_strong = strong_available
            extra_weak = min(deficit, weak_available - target_weak)
            if extra_weak > 0:
                target_weak += extra_weak

        return criteria.model_copy(
            update={
                "weak_categories": [a.category_id for a in weak if a.available_questions > 0],
                "strong_categories": [a.category_id for a in strong if a.available_questions > 0],
                "target_weak_questions": target_weak,
                "target_strong_questions": target_strong,
            }
        )

    async def exclude_recent_questions(
        self, user_id: str, days: int = RECENT_QUESTIONS_DAYS, now: Optional[datetime] = None
    ) -> List[str]:
        """Ids of questions served to the user during the last ``days`` days."""
        since = (now or utc_now()) - timedelta(days=days)
        try:
            sessions = await AdaptiveQuizSessionRepository(self.session).list_created_since(user_id, since)
        except Exception as e:
            logger.error(f"Error fetching recent questions: {e}")
            return []
        seen: List[str] = []
        for quiz_session in sessions:
            for question_id in quiz_session.question_ids or []:
                if str(question_id) not in seen:
                    seen.append(str(question_id))
        return seen

    @staticmethod
    def apply_distribution_rules(criteria: SelectionCriteria) -> SelectionCriteria:
        """Fill unset targets with the 70% weak / 30% strong split."""
        total = criteria.target_weak_questions + criteria.target_strong_questions or DEFAULT_TOTAL_QUESTIONS
        return criteria.model_copy(
            update={
                "target_weak_questions": criteria.target_weak_questions or math.ceil(total * DEFAULT_WEAK_PERCENTAGE),
                "target_strong_questions": criteria.target_strong_questions
                or math.floor(total * DEFAULT_STRONG_PERCENTAGE),
            }
        )

    def balance_by_difficulty(
        self, questions: Sequence[Question], distribution: DifficultyDistribution
    ) -> List[Question]:
        """Pick questions per difficulty, filling shortfalls from the rest."""
        balanced: List[Question] = []
        for difficulty, wanted in (
            (Difficulty.EASY.value, distribution.easy),
            (Difficulty.MEDIUM.value, distribution.medium),
            (Difficulty.HARD.value, distribution.hard),
        ):
            pool = [q for q in questions if q.difficulty == difficulty]
            balanced.extend(self.shuffle_questions(pool)[: min(wanted, len(pool))])

        if len(balanced) < distribution.total:
            chosen = {q.id for q in balanced}
            remaining = [q for q in questions if q.id not in chosen]
            balanced.extend(self.shuffle_questions(remaining)[: distribution.total - len(balanced)])

        return self.shuffle_questions(balanced)

    @staticmethod
    def create_default_difficulty_distribution(total_questions: int) -> DifficultyDistribution:
        medium = math.ceil(total_questions * 0.4)
        easy = math.ceil(total_questions * 0.3)
        hard = total_questions - medium - easy
        return DifficultyDistribution(easy=max(0, easy), medium=max(0, medium), hard=max(0, hard))

    async def get_selection_statistics(self, criteria: SelectionCriteria) -> Dict[str, Any]:
        availability = await self.validate_question_availability(criteria)
        total_available = sum(a.available_questions for a in availability)
        total_requested = criteria.target_weak_questions + criteria.target_strong_questions

        recommendations: List[str] = []
        if total_available < total_requested:
            recommendations.append(
                f"Insufficient questions: {total_available} available, {total_requested} requested"
            )
        for a in availability:
            if not a.can_fulfill:
                recommendations.append(
                    f'Category "{a.category_name}" has only {a.available_questions} questions, '
                    f"needs {a.requested_questions}"
                )

        def stats(kind: str) -> List[Dict[str, Any]]:
            return [
                {"categoryId": a.category_id, "available": a.available_questions, "requested": a.requested_questions}
                for a in availability
                if a.type == kind
            ]

        return {
            "totalAvailableQuestions": total_available,
            "weakCategoriesStats": stats("weak"),
            "strongCategoriesStats": stats("strong"),
            "canFulfillRequest": total_available >= total_requested,
            "recommendedAdjustments": recommendations or None,
        }

    async def _check_category_availability(
        self, category_id: str, requested: int, student_level: str, exclude_ids: Sequence[str], kind: str
    ) -> CategoryAvailability:
        try:
            category = await CategoryRepository(self.session).get_by_id(category_id)
            available = await self.questions.count_available(student_level, category_id, exclude_ids)
            return CategoryAvailability(
                category_id=category_id,
                category_name=category.title if category else "Unknown Category",
                available_questions=available,
                requested_questions=requested,
                can_fulfill=available >= requested,
                type=kind,
            )
        except Exception as e:
            logger.error(f"Error checking availability for category {category_id}: {e}")
            return CategoryAvailability(
                category_id=category_id,
                category_name="Unknown Category",
                available_questions=0,
                requested_questions=requested,
                can_fulfill=False,
                type=kind,
            )

    async def _category_breakdown(
        self, weak: Sequence[Question], strong: Sequence[Question], criteria: SelectionCriteria
    ) -> List[Dict[str, Any]]:
        categories = await CategoryRepository(self.session).get_many(
            criteria.weak_categories + criteria.strong_categories
        )
        breakdown: List[Dict[str, Any]] = []
        for kind, picked, category_ids in (
            ("weak", weak, criteria.weak_categories),
            ("strong", strong, criteria.strong_categories),
        ):
            for category_id in category_ids:
                count = sum(1 for q in picked if q.category_id == category_id)
                if count and category_id in categories:
                    breakdown.append(
                        {
                            "categoryId": category_id,
                            "categoryName": categories[category_id].title,
                            "questionsSelected": count,
                            "type": kind,
                        }
                    )
        return breakdown
