"""
Adaptive quiz orchestration.

Generation runs the prerequisites, the performance analytics and the
question selection before opening a session. Submission scores the answers
per category, compares them with past results, writes recommendations and
refreshes the question statistics.
"""

from __future__ import annotations

import logging
import math
import random
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.adaptive_quiz import (
    AdaptiveQuizResult,
    AdaptiveQuizSession,
    SessionStatus,
)
from medprep_ai.core.database.entities.quizzes import Question
from medprep_ai.core.database.entities.users import StudyYear
from medprep_ai.core.database.repositories import (
    AdaptiveQuizResultRepository,
    AdaptiveQuizSessionRepository,
    CategoryRepository,
    QuestionRepository,
    UserRepository,
)
from medprep_ai.core.utils import round_half_up
from medprep_ai.server.core.config import settings
from medprep_ai.server.hooks.rate_limit import RateLimitExceeded, enforce_rate_limit, start_of_utc_day

from .errors import AdaptiveQuizErrorType as E
from .errors import AdaptiveQuizException
from .performance_analytics import PerformanceAnalyticsService
from .question_selection import QuestionSelectionEngine, SelectionCriteria

logger = logging.getLogger(__name__)

DEFAULT_WEAK_QUESTIONS = 5
DEFAULT_STRONG_QUESTIONS = 2
DEFAULT_TARGET_SUCCESS_RATE = 0.6

MAX_RECOMMENDATIONS = 5
TREND_THRESHOLD = 0.05
DECLINE_THRESHOLD = -0.1
IMPROVEMENT_AREA_BELOW = 0.6
STRENGTH_AREA_FROM = 0.8
PROGRESS_HISTORY_SIZE = 5
STREAK_HISTORY_SIZE = 30

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}

KNOWN_GENERATION_ERRORS = (
    E.INSUFFICIENT_DATA.value,
    E.INSUFFICIENT_QUESTIONS.value,
    E.LEVEL_NOT_SET.value,
    E.DAILY_LIMIT_EXCEEDED.value,
    E.COOLDOWN_ACTIVE.value,
)

Answer = Union[str, List[str]]


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix(length: int) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def new_session_id(prefix: str = "adaptive", suffix_length: int = 9) -> str:
    """Public session identifier, ``{prefix}_{epoch ms}_{random base36}``."""
    return f"{prefix}_{_epoch_ms()}_{_random_suffix(suffix_length)}"


def parse_expiry(value: Union[str, datetime]) -> datetime:
    """Normalise a client expiry to naive UTC.

    Raises:
        AdaptiveQuizException: ``validation_error`` when the value is not an ISO 8601 datetime
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise AdaptiveQuizException(
                E.VALIDATION_ERROR, {"field": "expiresAt", "message": f"Invalid ISO 8601 datetime: {value}"}
            ) from e
    if not isinstance(value, datetime):
        raise AdaptiveQuizException(E.VALIDATION_ERROR, {"field": "expiresAt", "message": "expiresAt must be a datetime"})
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def serialize_question(question: Question) -> Dict[str, Any]:
    return {
        "id": question.id,
        "questionText": question.question_text,
        "questionType": question.question_type,
        "options": list(question.options or []),
        "explanation": question.explanation,
        "categoryId": question.category_id,
        "courseId": question.course_id,
        "difficulty": question.difficulty,
        "studentLevel": question.student_level,
        "tags": list(question.tags or []),
    }


def serialize_session(quiz_session: AdaptiveQuizSession) -> Dict[str, Any]:
    return {
        "id": quiz_session.id,
        "sessionId": quiz_session.session_id,
        "userId": quiz_session.user_id,
        "questions": list(quiz_session.question_ids or []),
        "status": quiz_session.status,
        "basedOnAnalytics": quiz_session.based_on_analytics,
        "questionDistribution": quiz_session.question_distribution,
        "config": quiz_session.config,
        "studentLevel": quiz_session.student_level,
        "expiresAt": quiz_session.expires_at.isoformat() if quiz_session.expires_at else None,
        "createdAt": quiz_session.created_at.isoformat(),
    }


def serialize_result(result: AdaptiveQuizResult) -> Dict[str, Any]:
    return {
        "resultId": result.id,
        "overallScore": result.overall_score,
        "maxScore": result.max_score,
        "successRate": result.success_rate,
        "timeSpent": result.time_spent,
        "completedAt": result.completed_at.isoformat(),
        "categoryResults": result.category_results,
        "recommendations": result.recommendations,
        "progressComparison": result.progress_comparison,
        "improvementAreas": result.improvement_areas,
        "strengthAreas": result.strength_areas,
        "nextAdaptiveQuizAvailableAt": (
            result.next_adaptive_quiz_available_at.isoformat() if result.next_adaptive_quiz_available_at else None
        ),
    }


class AdaptiveQuizService:
    def __init__(self, session: AsyncSession, selection: Optional[QuestionSelectionEngine] = None):
        self.session = session
        self.analytics = PerformanceAnalyticsService(session)
        self.selection = selection or QuestionSelectionEngine(session)
        self.sessions = AdaptiveQuizSessionRepository(session)
        self.results = AdaptiveQuizResultRepository(session)
        self.questions = QuestionRepository(session)
        self.categories = CategoryRepository(session)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_adaptive_quiz(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Generate an adaptive quiz for a student.

        Args:
            user_id: Student requesting the quiz
            now: Reference time (naive UTC), defaults to the current time

        Returns:
            ``{sessionId, questions, metadata}``

        Raises:
            AdaptiveQuizException: A known prerequisite error, or
                ``technical_error`` for anything unexpected
        """
        now = now or utc_now()
        try:
            validation = await self.validate_prerequisites(user_id, now)
            if not validation["isValid"]:
                raise AdaptiveQuizException(validation["errors"][0])

            student_level = await self.get_student_level(user_id)
            analytics = await self.analytics.analyze_user_performance(user_id)

            criteria = self.create_selection_criteria(analytics, student_level)
            criteria.exclude_question_ids = await self.selection.exclude_recent_questions(user_id, now=now)
            selection = await self.selection.select_adaptive_questions(criteria)
            if not selection.questions:
                logger.error(f"No questions selected for user {user_id}")
                raise AdaptiveQuizException(
                    E.INSUFFICIENT_QUESTIONS,
                    {"weakCategories": criteria.weak_categories, "strongCategories": criteria.strong_categories},
                )

            distribution = {
                "weakCategoryQuestions": selection.weak_questions,
                "strongCategoryQuestions": selection.strong_questions,
                "totalQuestions": selection.total_questions,
            }
            quiz_session = await self.create_adaptive_quiz_session(
                user_id, selection.questions, analytics, student_level, distribution, now
            )
            logger.info(f"Adaptive session {quiz_session.session_id} created with {selection.total_questions} questions")

            return {
                "sessionId": quiz_session.session_id,
                "questions": [serialize_question(q) for q in selection.questions],
                "metadata": {
                    "basedOnAnalytics": {
                        "weakCategories": self._category_summaries(analytics["weakestCategories"]),
                        "strongCategories": self._category_summaries(analytics["strongestCategories"]),
                        "analysisDate": analytics["analysisDate"],
                        "overallSuccessRate": analytics["overallSuccessRate"],
                        "totalQuizzesAnalyzed": analytics["totalQuizzesTaken"],
                    },
                    "questionDistribution": distribution,
                    "config": self._config(),
                    "studentLevel": student_level,
                    "expiresAt": quiz_session.expires_at.isoformat(),
                },
            }
        except AdaptiveQuizException as e:
            if e.error_type in KNOWN_GENERATION_ERRORS:
                raise
            logger.error(f"Adaptive quiz generation failed for user {user_id}: {e.error_type}")
            raise AdaptiveQuizException(E.TECHNICAL_ERROR, e.details) from e
        except RateLimitExceeded as e:
            raise AdaptiveQuizException(e.reason, {"value": e.value}) from e
        except Exception as e:
            logger.error(f"Error generating adaptive quiz: {e}", exc_info=True)
            raise AdaptiveQuizException(E.TECHNICAL_ERROR, {"originalMessage": str(e)}) from e

    async def validate_prerequisites(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Check level, minimum data and rate limits.

        Returns:
            ``{isValid, errors, warnings}``
        """
        now = now or utc_now()
        errors: List[str] = []
        warnings: List[str] = []
        try:
            user = await UserRepository(self.session).get_by_id(user_id)
            if user is None:
                return {"isValid": False, "errors": ["user_not_found"], "warnings": None}

            if user.study_year not in (StudyYear.PASS.value, StudyYear.LAS.value):
                errors.append(E.LEVEL_NOT_SET.value)
            if not await self.analytics.has_minimum_data(user_id):
                errors.append(E.INSUFFICIENT_DATA.value)

            daily_limit = settings.adaptive_quiz.daily_limit
            today = await self.sessions.count_created_since(user_id, start_of_utc_day(now))
            if today >= daily_limit:
                errors.append(E.DAILY_LIMIT_EXCEEDED.value)
            elif today >= daily_limit - 1:
                warnings.append("approaching_daily_limit")
        except Exception as e:
            logger.error(f"Error validating prerequisites: {e}")
            return {"isValid": False, "errors": [E.VALIDATION_ERROR.value], "warnings": None}

        return {"isValid": not errors, "errors": errors, "warnings": warnings or None}

    async def get_student_level(self, user_id: str) -> str:
        user = await UserRepository(self.session).get_by_id(user_id)
        if user is None or not user.study_year:
            raise AdaptiveQuizException(E.LEVEL_NOT_SET)
        if user.study_year not in (StudyYear.PASS.value, StudyYear.LAS.value):
            raise AdaptiveQuizException(E.LEVEL_NOT_SET, {"studyYear": user.study_year})
        return user.study_year.upper()

    def create_selection_criteria(self, analytics: Dict[str, Any], student_level: str) -> SelectionCriteria:
        total = DEFAULT_WEAK_QUESTIONS + DEFAULT_STRONG_QUESTIONS
        return SelectionCriteria(
            weak_categories=[c["categoryId"] for c in analytics.get("weakestCategories", [])],
            strong_categories=[c["categoryId"] for c in analytics.get("strongestCategories", [])],
            target_weak_questions=DEFAULT_WEAK_QUESTIONS,
            target_strong_questions=DEFAULT_STRONG_QUESTIONS,
            student_level=student_level,
            difficulty_distribution=self.selection.create_default_difficulty_distribution(total),
        )

    async def create_adaptive_quiz_session(
        self,
        user_id: str,
        questions: Sequence[Question],
        analytics: Dict[str, Any],
        student_level: str,
        distribution: Dict[str, int],
        now: Optional[datetime] = None,
    ) -> AdaptiveQuizSession:
        now = now or utc_now()
        quiz_session = AdaptiveQuizSession(
            session_id=new_session_id(),
            user_id=user_id,
            question_ids=[q.id for q in questions],
            status=SessionStatus.ACTIVE.value,
            based_on_analytics={
                "weakCategories": [c["categoryId"] for c in analytics.get("weakestCategories", [])],
                "strongCategories": [c["categoryId"] for c in analytics.get("strongestCategories", [])],
                "analysisDate": analytics.get("analysisDate"),
                "overallSuccessRate": analytics.get("overallSuccessRate"),
                "totalQuizzesAnalyzed": analytics.get("totalQuizzesTaken"),
            },
            question_distribution=distribution,
            config=self._config(),
            student_level=student_level,
            expires_at=now + timedelta(hours=settings.adaptive_quiz.session_expiry_hours),
            questions_count=len(questions),
        )
        return await self._insert_session(quiz_session, now)

    async def create_session(self, user_id: str, data: Dict[str, Any], now: Optional[datetime] = None) -> AdaptiveQuizSession:
        """Open a session from a client-provided question list."""
        now = now or utc_now()
        question_ids = [str(q) for q in data.get("questions") or []]
        if not question_ids:
            raise AdaptiveQuizException(E.VALIDATION_ERROR, {"message": "questions array is required"})
        expires_at = data.get("expiresAt")
        if expires_at:
            expires_at = parse_expiry(expires_at)
        else:
            expires_at = now + timedelta(hours=settings.adaptive_quiz.session_expiry_hours)
        quiz_session = AdaptiveQuizSession(
            session_id=new_session_id("session", 13),
            user_id=user_id,
            question_ids=question_ids,
            status=SessionStatus.ACTIVE.value,
            based_on_analytics=data.get("basedOnAnalytics") or {},
            question_distribution=data.get("questionDistribution") or {},
            config=data.get("config") or {},
            student_level=data.get("studentLevel") or "PASS",
            expires_at=expires_at,
            questions_count=len(question_ids),
        )
        return await self._insert_session(quiz_session, now)

    async def _insert_session(self, quiz_session: AdaptiveQuizSession, now: datetime) -> AdaptiveQuizSession:
        await enforce_rate_limit(self.session, quiz_session.user_id, now)
        return await self.sessions.create(quiz_session)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def save_adaptive_quiz_results(
        self,
        session_id: str,
        answers: Dict[str, Answer],
        time_spent: int = 0,
        now: Optional[datetime] = None,
    ) -> AdaptiveQuizResult:
        """
        Score the answers of a session and store the result.

        Args:
            session_id: Public session identifier
            answers: Chosen option id (or ids) per question id
            time_spent: Seconds spent answering
            now: Reference time (naive UTC), defaults to the current time

        Returns:
            The stored result

        Raises:
            AdaptiveQuizException: ``session_not_found``, ``session_expired``
                or ``session_already_completed``
        """
        now = now or utc_now()
        quiz_session = await self.get_active_session(session_id, now)

        enriched = await self.enrich_quiz_answers(quiz_session, answers)
        category_results = await self.calculate_category_results(quiz_session.user_id, enriched)
        recommendations = await self.generate_personalized_recommendations(category_results)
        progress = await self.calculate_progress_comparison(quiz_session.user_id, category_results, now)

        total = len(enriched)
        correct = sum(1 for answer in enriched if answer["isCorrect"])
        result = await self.results.create(
            AdaptiveQuizResult(
                session_id=quiz_session.id,
                user_id=quiz_session.user_id,
                overall_score=correct,
                max_score=total,
                success_rate=correct / total if total else 0.0,
                time_spent=time_spent,
                completed_at=now,
                category_results=category_results,
                recommendations=recommendations,
                progress_comparison=progress,
                improvement_areas=[
                    {"categoryId": r["category"], "categoryName": r["categoryName"]}
                    for r in category_results
                    if r["successRate"] < IMPROVEMENT_AREA_BELOW
                ],
                strength_areas=[
                    {"categoryId": r["category"], "categoryName": r["categoryName"]}
                    for r in category_results
                    if r["successRate"] >= STRENGTH_AREA_FROM
                ],
                next_adaptive_quiz_available_at=now + timedelta(minutes=settings.adaptive_quiz.cooldown_minutes),
            )
        )

        quiz_session.status = SessionStatus.COMPLETED.value
        await self.sessions.update(quiz_session)

        await self.update_question_statistics(enriched)
        await self.analytics.invalidate_user_cache(quiz_session.user_id)
        return result

    async def save_result(self, user_id: str, data: Dict[str, Any], now: Optional[datetime] = None) -> AdaptiveQuizResult:
        """Store a result computed by the client and complete its session."""
        now = now or utc_now()
        quiz_session = await self.sessions.get_by_session_id(data["sessionId"])
        if quiz_session is None:
            raise AdaptiveQuizException(E.SESSION_NOT_FOUND)

        total_time_ms = data.get("totalTimeMs")
        if isinstance(total_time_ms, (int, float)) and not isinstance(total_time_ms, bool) and math.isfinite(total_time_ms):
            time_spent = max(0, round_half_up(total_time_ms / 1000))
        else:
            time_spent = data.get("timeSpent") or 0

        result = await self.results.create(
            AdaptiveQuizResult(
                session_id=quiz_session.id,
                user_id=user_id,
                overall_score=data.get("overallScore") or 0,
                max_score=data.get("maxScore") or 0,
                success_rate=data.get("successRate") or 0,
                time_spent=time_spent,
                completed_at=now,
                category_results=data.get("categoryResults") or [],
                recommendations=data.get("recommendations") or [],
                progress_comparison=data.get("progressComparison") or {},
                improvement_areas=data.get("improvementAreas") or [],
                strength_areas=data.get("strengthAreas") or [],
            )
        )

        try:
            quiz_session.status = SessionStatus.COMPLETED.value
            await self.sessions.update(quiz_session)
        except Exception as e:
            logger.warning(f"Could not update session status: {e}")
            await self.session.rollback()
        return result

    async def get_active_session(self, session_id: str, now: Optional[datetime] = None) -> AdaptiveQuizSession:
        quiz_session = await self.sessions.get_by_session_id(session_id)
        if quiz_session is None:
            raise AdaptiveQuizException(E.SESSION_NOT_FOUND)
        if quiz_session.is_expired(now):
            raise AdaptiveQuizException(E.SESSION_EXPIRED)
        if quiz_session.status == SessionStatus.COMPLETED.value:
            raise AdaptiveQuizException(E.SESSION_ALREADY_COMPLETED)
        return quiz_session

    async def enrich_quiz_answers(
        self, quiz_session: AdaptiveQuizSession, answers: Dict[str, Answer]
    ) -> List[Dict[str, Any]]:
        """Grade the answered questions of the session, in session order.

        Unanswered and deleted questions are skipped.
        """
        answered = [qid for qid in quiz_session.question_ids or [] if str(qid) in answers]
        enriched: List[Dict[str, Any]] = []
        for question in await self.questions.get_many(answered):
            user_answer = answers[question.id]
            enriched.append(
                {
                    "questionId": question.id,
                    "question": question,
                    "userAnswer": user_answer,
                    "isCorrect": question.is_correct(user_answer),
                    "categoryId": question.category_id,
                    "difficulty": question.difficulty or "medium",
                }
            )
        return enriched

    async def calculate_category_results(
        self, user_id: str, enriched: Sequence[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        stats: Dict[str, Dict[str, int]] = {}
        for answer in enriched:
            category_id = answer["categoryId"]
            if not category_id:
                continue
            entry = stats.setdefault(category_id, {"questionsCount": 0, "correctAnswers": 0, "incorrectAnswers": 0})
            entry["questionsCount"] += 1
            if answer["isCorrect"]:
                entry["correctAnswers"] += 1
            else:
                entry["incorrectAnswers"] += 1

        categories = await self.categories.get_many(stats.keys())
        results: List[Dict[str, Any]] = []
        for category_id, entry in stats.items():
            success_rate = entry["correctAnswers"] / entry["questionsCount"]
            previous = await self.analytics.get_category_performance(user_id, category_id)
            previous_rate = previous["successRate"] if previous else None
            category = categories.get(category_id)
            results.append(
                {
                    "category": category_id,
                    "categoryName": category.title if category else category_id,
                    **entry,
                    "successRate": success_rate,
                    "previousSuccessRate": previous_rate,
                    "scoreImprovement": success_rate - previous_rate if previous_rate is not None else None,
                }
            )
        return results

    async def generate_personalized_recommendations(
        self, category_results: Sequence[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """At most five recommendations, high priority first."""
        stamp = _epoch_ms()
        recommendations: List[Dict[str, Any]] = []

        def add(kind: str, prefix: str, category_id: str, message: str, priority: str, minutes: int) -> None:
            recommendations.append(
                {
                    "recommendationId": f"{prefix}_{category_id}_{stamp}",
                    "type": kind,
                    "category": category_id,
                    "message": message,
                    "priority": priority,
                    "estimatedTimeMinutes": minutes,
                }
            )

        for result in category_results:
            category_id = result["category"]
            title = result.get("categoryName") or category_id
            rate = result["successRate"]
            if rate < 0.5:
                add(
                    "study_more",
                    "study",
                    category_id,
                    f"Votre performance en {title} nécessite plus d'étude. Concentrez-vous sur les concepts de base.",
                    "high",
                    60,
                )
                add(
                    "practice_quiz",
                    "practice",
                    category_id,
                    f"Pratiquez plus de quiz en {title} pour améliorer vos résultats.",
                    "high",
                    30,
                )
            elif rate < 0.7:
                add(
                    "review_material",
                    "review",
                    category_id,
                    f"Révisez le matériel de cours pour {title} pour consolider vos connaissances.",
                    "medium",
                    45,
                )
            elif rate >= 0.8:
                add(
                    "maintain_strength",
                    "maintain",
                    category_id,
                    f"Excellente performance en {title}! Continuez à maintenir ce niveau.",
                    "low",
                    15,
                )

            improvement = result.get("scoreImprovement")
            if improvement is not None and improvement < DECLINE_THRESHOLD:
                add(
                    "focus_category",
                    "focus",
                    category_id,
                    f"Votre performance en {title} a baissé. Concentrez-vous sur cette matière.",
                    "high",
                    90,
                )

        recommendations.sort(key=lambda r: PRIORITY_ORDER[r["priority"]], reverse=True)
        return recommendations[:MAX_RECOMMENDATIONS]

    async def calculate_progress_comparison(
        self, user_id: str, category_results: Sequence[Dict[str, Any]], now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        current = (
            sum(r["successRate"] for r in category_results) / len(category_results) if category_results else 0.0
        )
        try:
            recent = await self.results.list_recent_for_user(user_id, PROGRESS_HISTORY_SIZE)
            streak = await self.calculate_streak_days(user_id, now)
        except Exception as e:
            logger.error(f"Error calculating progress comparison: {e}")
            return {"currentScore": current, "trend": "stable"}

        progress: Dict[str, Any] = {"currentScore": current, "trend": "stable", "streakDays": streak}
        if recent:
            previous = sum(r.success_rate for r in recent) / len(recent)
            improvement = current - previous
            progress["previousAverageScore"] = previous
            progress["improvement"] = improvement
            if improvement > TREND_THRESHOLD:
                progress["trend"] = "improving"
            elif improvement < -TREND_THRESHOLD:
                progress["trend"] = "declining"
            progress["lastQuizDate"] = recent[0].completed_at.isoformat()
        return progress

    async def calculate_streak_days(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Consecutive UTC days, ending today, with at least one adaptive result."""
        results = await self.results.list_recent_for_user(user_id, STREAK_HISTORY_SIZE)
        today = (now or utc_now()).date()
        streak = 0
        for result in results:
            days_ago = (today - result.completed_at.date()).days
            if days_ago == streak:
                streak += 1
            elif days_ago > streak:
                break
        return streak

    async def update_question_statistics(self, enriched: Sequence[Dict[str, Any]]) -> None:
        """Fold each answer into its question's ``timesUsed`` and ``successRate``."""
        try:
            for answer in enriched:
                question: Question = answer["question"]
                metadata = dict(question.adaptive_metadata or {})
                times_used = metadata.get("timesUsed") or 0
                success_rate = metadata.get("successRate") or 0
                hit = 1 if answer["isCorrect"] else 0
                metadata["timesUsed"] = times_used + 1
                metadata["successRate"] = (success_rate * times_used + hit) / (times_used + 1)
                question.adaptive_metadata = metadata
                self.session.add(question)
            await self.session.commit()
        except Exception as e:
            logger.error(f"Error updating question statistics: {e}")
            await self.session.rollback()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    async def get_result_for_session(self, session_id: str) -> Optional[AdaptiveQuizResult]:
        quiz_session = await self.sessions.get_by_session_id(session_id)
        if quiz_session is None:
            return None
        return await self.results.get_by_session(quiz_session.id)

    async def get_history(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """One page of the user's sessions, newest first, each with its result."""
        page = max(1, page)
        limit = max(1, min(limit, 100))
        sessions = await self.sessions.list_for_user(user_id, limit, (page - 1) * limit)
        total = await self.sessions.count_for_user(user_id)

        docs = []
        for quiz_session in sessions:
            result = await self.results.get_by_session(quiz_session.id)
            docs.append({**serialize_session(quiz_session), "result": serialize_result(result) if result else None})

        total_pages = math.ceil(total / limit) if total else 0
        return {
            "docs": docs,
            "totalDocs": total,
            "page": page,
            "limit": limit,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        }

    @staticmethod
    def _config() -> Dict[str, Any]:
        return {
            "weakQuestionsCount": DEFAULT_WEAK_QUESTIONS,
            "strongQuestionsCount": DEFAULT_STRONG_QUESTIONS,
            "targetSuccessRate": DEFAULT_TARGET_SUCCESS_RATE,
        }

    @staticmethod
    def _category_summaries(performances: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [{"id": p["categoryId"], "title": p["categoryName"]} for p in performances]
