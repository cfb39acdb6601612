"""
Performance analytics.

Aggregates a student's graded quiz submissions per category and keeps the
result as a UserPerformance snapshot that adaptive generation reads back.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.adaptive_quiz import UserPerformance
from medprep_ai.core.database.entities.quizzes import QuizSubmission
from medprep_ai.core.database.repositories import (
    CategoryRepository,
    QuestionRepository,
    QuizSubmissionRepository,
    UserPerformanceRepository,
)
from medprep_ai.server.services.errors import AdaptiveQuizErrorType, AdaptiveQuizException

logger = logging.getLogger(__name__)

# Categories with fewer answered questions are not ranked.
MIN_QUESTIONS_FOR_RANKING = 3
RANKED_CATEGORIES = 3
MIN_SUBMISSIONS = 3


class PerformanceAnalyticsService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.submissions = QuizSubmissionRepository(session)
        self.snapshots = UserPerformanceRepository(session)

    async def analyze_user_performance(self, user_id: str, force_recalculate: bool = False) -> Dict[str, Any]:
        """
        Analyse the performance of a student across categories.

        The stored snapshot is returned unless ``force_recalculate`` is set;
        a fresh computation replaces the snapshot.

        Args:
            user_id: Student to analyse
            force_recalculate: Ignore the stored snapshot

        Returns:
            Analytics dictionary (``overallSuccessRate``, ``categoryPerformances``,
            ``weakestCategories``, ``strongestCategories``...)

        Raises:
            AdaptiveQuizException: ``insufficient_data`` when the student has
                no graded submission
        """
        if not force_recalculate:
            snapshot = await self.snapshots.get_by_user(user_id)
            if snapshot is not None:
                logger.info(f"Using stored performance data for user: {user_id}")
                return self._snapshot_to_analytics(snapshot)

        logger.info(f"Calculating performance from scratch for user: {user_id}")
        submissions = await self.submissions.list_scored_for_student(user_id)
        if not submissions:
            logger.warning(f"User {user_id} has no completed quiz submissions with valid finalScore")
            raise AdaptiveQuizException(AdaptiveQuizErrorType.INSUFFICIENT_DATA)

        performances = await self.calculate_category_performances(submissions)
        total_answers = sum(len(submission.answers or []) for submission in submissions)
        total_correct = sum(
            1 for submission in submissions for answer in submission.answers or [] if answer.get("isCorrect")
        )

        snapshot = await self._store_snapshot(
            user_id,
            overall_success_rate=total_correct / total_answers if total_answers else 0.0,
            total_quizzes_taken=len(submissions),
            total_questions_answered=total_answers,
            category_performances=performances,
            weakest_categories=self.identify_weakest_categories(performances),
            strongest_categories=self.identify_strongest_categories(performances),
        )
        return self._snapshot_to_analytics(snapshot)

    async def calculate_category_performances(self, submissions: Sequence[QuizSubmission]) -> List[Dict[str, Any]]:
        """Per-category statistics, most answered categories first.

        Answers whose question (or its category) no longer exists are ignored.
        """
        question_ids = {
            str(answer["question"])
            for submission in submissions
            for answer in submission.answers or []
            if answer.get("question")
        }
        questions = {question.id: question for question in await QuestionRepository(self.session).get_many(question_ids)}
        categories = await CategoryRepository(self.session).get_many(
            question.category_id for question in questions.values() if question.category_id
        )

        stats: Dict[str, Dict[str, Any]] = {}
        for submission in submissions:
            for answer in submission.answers or []:
                question = questions.get(str(answer.get("question")))
                if question is None or question.category_id not in categories:
                    continue
                category = categories[question.category_id]
                entry = stats.setdefault(
                    category.id,
                    {
                        "categoryId": category.id,
                        "categoryName": category.title,
                        "totalQuestions": 0,
                        "correctAnswers": 0,
                        "lastAttemptDate": submission.submission_date,
                    },
                )
                entry["totalQuestions"] += 1
                if answer.get("isCorrect"):
                    entry["correctAnswers"] += 1
                if submission.submission_date > entry["lastAttemptDate"]:
                    entry["lastAttemptDate"] = submission.submission_date

        performances = [
            {
                "categoryId": entry["categoryId"],
                "categoryName": entry["categoryName"],
                "totalQuestions": entry["totalQuestions"],
                "correctAnswers": entry["correctAnswers"],
                "successRate": entry["correctAnswers"] / entry["totalQuestions"],
                "lastAttemptDate": entry["lastAttemptDate"].isoformat(),
                "questionsAttempted": entry["totalQuestions"],
            }
            for entry in stats.values()
        ]
        return sorted(performances, key=lambda p: p["totalQuestions"], reverse=True)

    @staticmethod
    def identify_weakest_categories(performances: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ranked = [p for p in performances if p["totalQuestions"] >= MIN_QUESTIONS_FOR_RANKING]
        return sorted(ranked, key=lambda p: p["successRate"])[:RANKED_CATEGORIES]

    @staticmethod
    def identify_strongest_categories(performances: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ranked = [p for p in performances if p["totalQuestions"] >= MIN_QUESTIONS_FOR_RANKING]
        return sorted(ranked, key=lambda p: p["successRate"], reverse=True)[:RANKED_CATEGORIES]

    async def has_minimum_data(self, user_id: str) -> bool:
        count = await self.submissions.count_scored_for_student(user_id)
        logger.info(f"User {user_id} has {count} valid quiz submissions (minimum required: {MIN_SUBMISSIONS})")
        return count >= MIN_SUBMISSIONS

    async def get_category_performance(self, user_id: str, category_id: str) -> Optional[Dict[str, Any]]:
        submissions = await self.submissions.list_scored_for_student(user_id)
        if not submissions:
            return None
        for performance in await self.calculate_category_performances(submissions):
            if performance["categoryId"] == category_id:
                return performance
        return None

    async def invalidate_user_cache(self, user_id: str) -> None:
        """Drop the stored snapshot so the next analysis recomputes it."""
        if await self.snapshots.delete_by_user(user_id):
            logger.debug(f"Performance snapshot invalidated for user: {user_id}")

    async def _store_snapshot(self, user_id: str, **values: Any) -> UserPerformance:
        snapshot = await self.snapshots.get_by_user(user_id)
        if snapshot is None:
            snapshot = UserPerformance(user_id=user_id)
        for field, value in values.items():
            setattr(snapshot, field, value)
        snapshot.analysis_date = utc_now()
        return await self.snapshots.update(snapshot)

    @staticmethod
    def _snapshot_to_analytics(snapshot: UserPerformance) -> Dict[str, Any]:
        return {
            "userId": snapshot.user_id,
            "overallSuccessRate": snapshot.overall_success_rate,
            "categoryPerformances": list(snapshot.category_performances or []),
            "weakestCategories": list(snapshot.weakest_categories or []),
            "strongestCategories": list(snapshot.strongest_categories or []),
            "totalQuizzesTaken": snapshot.total_quizzes_taken,
            "totalQuestionsAnswered": snapshot.total_questions_answered,
            "analysisDate": snapshot.analysis_date.isoformat(),
        }
