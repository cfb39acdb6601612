"""
Error recovery strategies.

For each recoverable adaptive quiz error this service works out what the
student (or the client) should do next: retry later, complete the profile,
take more quizzes, or use an automatically adjusted question selection.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.audit_logs import AuditAction, AuditLog
from medprep_ai.core.database.entities.users import User
from medprep_ai.core.database.repositories import (
    AdaptiveQuizSessionRepository,
    QuestionRepository,
    QuizRepository,
    QuizSubmissionRepository,
    UserRepository,
)
from medprep_ai.core.utils import round_half_up
from medprep_ai.server.core.config import settings
from medprep_ai.server.hooks.rate_limit import next_utc_midnight, start_of_utc_day

logger = logging.getLogger(__name__)

REQUIRED_QUIZZES = 3
MIN_QUESTIONS_NEEDED = 7
MAX_TECHNICAL_RETRIES = 3
BASE_RETRY_DELAY_SECONDS = 2

REQUIRED_PROFILE_FIELDS = ("studentLevel", "firstName", "lastName")
OPTIONAL_PROFILE_FIELDS = ("university", "studyYear", "specialization")
PROFILE_FIELD_ATTRIBUTES = {
    "studentLevel": "student_level",
    "firstName": "first_name",
    "lastName": "last_name",
    "university": "university",
    "studyYear": "study_year",
    "specialization": "specialization",
}
PROFILE_FIELD_LABELS = {
    "studentLevel": "Niveau d'études (PASS/LAS)",
    "firstName": "Prénom",
    "lastName": "Nom",
    "university": "Université",
    "studyYear": "Année d'études",
    "specialization": "Spécialisation",
}


class RecoveryStrategy(BaseModel):
    """What to do after an error; serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    can_recover: bool
    action: Optional[Literal["retry", "redirect", "adjust", "fallback", "wait"]] = None
    message: str
    details: Optional[Dict[str, Any]] = None
    retry_after_seconds: Optional[int] = None
    redirect_url: Optional[str] = None
    fallback_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def _suggestion(
    title: str,
    description: str,
    action_type: str,
    priority: str,
    action_url: Optional[str] = None,
    estimated_time_minutes: Optional[int] = None,
) -> Dict[str, Any]:
    suggestion: Dict[str, Any] = {
        "title": title,
        "description": description,
        "actionType": action_type,
        "priority": priority,
    }
    if action_url is not None:
        suggestion["actionUrl"] = action_url
    if estimated_time_minutes is not None:
        suggestion["estimatedTimeMinutes"] = estimated_time_minutes
    return suggestion


def analyze_technical_error(error: BaseException) -> Dict[str, Any]:
    """Classify a technical error as ``{type, isRetryable, severity}``."""
    message = str(error).lower()
    if any(word in message for word in ("timeout", "connection", "network")):
        return {"type": "network", "isRetryable": True, "severity": "medium"}
    if any(word in message for word in ("lock", "deadlock", "busy")):
        return {"type": "database_temporary", "isRetryable": True, "severity": "medium"}
    if "validation" in message or "invalid" in message:
        return {"type": "validation", "isRetryable": False, "severity": "low"}
    if "permission" in message or "unauthorized" in message:
        return {"type": "permission", "isRetryable": False, "severity": "medium"}
    if "out of memory" in message or "disk full" in message:
        return {"type": "system_critical", "isRetryable": False, "severity": "high"}
    return {"type": "generic", "isRetryable": True, "severity": "medium"}


def create_fallback_recovery(message: str) -> RecoveryStrategy:
    return RecoveryStrategy(
        can_recover=False,
        action="fallback",
        message=message,
        details={
            "fallbackReason": "Erreur lors de l'analyse de récupération",
            "timestamp": utc_now().isoformat(),
        },
    )


class ErrorRecoveryService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def handle_insufficient_data(self, user_id: str) -> RecoveryStrategy:
        try:
            stats = await self._get_user_quiz_stats(user_id)
            completed = stats["completedQuizzes"]
            missing = max(0, REQUIRED_QUIZZES - completed)

            suggestions = [
                _suggestion(
                    "Complétez des quiz réguliers",
                    f"Il vous manque {missing} quiz pour débloquer les quiz adaptatifs",
                    "take_quiz",
                    "high",
                    action_url="/student/quizzes",
                    estimated_time_minutes=missing * 15,
                )
            ]
            if len(stats["categoriesWithQuizzes"]) < 2:
                suggestions.append(
                    _suggestion(
                        "Diversifiez vos quiz",
                        "Essayez des quiz dans différentes catégories pour une meilleure analyse",
                        "take_quiz",
                        "medium",
                        action_url="/student/quizzes?filter=categories",
                        estimated_time_minutes=20,
                    )
                )

            return RecoveryStrategy(
                can_recover=True,
                action="redirect",
                message=f"Vous devez compléter {missing} quiz supplémentaires pour débloquer les quiz adaptatifs.",
                redirect_url="/student/quizzes",
                details={
                    "currentQuizzes": completed,
                    "requiredQuizzes": REQUIRED_QUIZZES,
                    "missingQuizzes": missing,
                    "suggestions": suggestions,
                    "progress": completed / REQUIRED_QUIZZES * 100,
                },
            )
        except Exception as e:
            logger.error(f"Insufficient data recovery failed for user {user_id}: {e}")
            return create_fallback_recovery("Impossible d'analyser vos données actuelles")

    async def handle_insufficient_questions(
        self, user_id: str, weak_categories: Sequence[str], strong_categories: Sequence[str]
    ) -> RecoveryStrategy:
        """Try to rebuild a feasible weak/strong selection from the question bank."""
        try:
            availability = await self._analyze_question_availability(user_id, weak_categories, strong_categories)
            adjusted = self._adjust_question_selection(availability)

            if adjusted["canGenerate"]:
                return RecoveryStrategy(
                    can_recover=True,
                    action="adjust",
                    message="Sélection de questions ajustée automatiquement selon la disponibilité",
                    details={
                        "originalWeakCategories": list(weak_categories),
                        "originalStrongCategories": list(strong_categories),
                        "adjustedWeakCategories": adjusted["weakCategories"],
                        "adjustedStrongCategories": adjusted["strongCategories"],
                        "adjustmentReason": adjusted["reason"],
                        "questionCounts": adjusted["questionCounts"],
                    },
                    fallback_data={
                        "weakCategories": adjusted["weakCategories"],
                        "strongCategories": adjusted["strongCategories"],
                        "config": adjusted["config"],
                    },
                )

            return RecoveryStrategy(
                can_recover=False,
                action="redirect",
                message=(
                    "Pas assez de questions disponibles dans vos catégories. "
                    "Complétez plus de quiz pour élargir la sélection."
                ),
                redirect_url="/student/quizzes",
                details={
                    "questionAvailability": availability,
                    "suggestions": self._question_availability_suggestions(availability),
                    "minimumQuestionsNeeded": MIN_QUESTIONS_NEEDED,
                    "currentQuestionsAvailable": availability["totalAvailable"],
                },
            )
        except Exception as e:
            logger.error(f"Insufficient questions recovery failed for user {user_id}: {e}")
            return create_fallback_recovery("Erreur lors de l'analyse des questions disponibles")

    async def handle_profile_incomplete(self, user_id: str) -> RecoveryStrategy:
        try:
            user = await UserRepository(self.session).get_by_id(user_id)
            if user is None:
                raise LookupError(f"user {user_id} not found")
            missing = self.identify_missing_profile_fields(user)
            return RecoveryStrategy(
                can_recover=True,
                action="redirect",
                message="Votre profil doit être complété pour générer des quiz adaptatifs personnalisés.",
                redirect_url="/profile",
                details={
                    "missingFields": missing,
                    "suggestions": [
                        _suggestion(
                            f"Renseigner {PROFILE_FIELD_LABELS.get(field, field)}",
                            "Ce champ améliore la personnalisation de vos quiz",
                            "complete_profile",
                            "high" if field in REQUIRED_PROFILE_FIELDS else "medium",
                            action_url="/profile",
                            estimated_time_minutes=2,
                        )
                        for field in missing
                    ],
                    "completionPercentage": self.calculate_profile_completion(user),
                    "estimatedTimeMinutes": len(missing) * 2,
                },
            )
        except Exception as e:
            logger.error(f"Profile recovery failed for user {user_id}: {e}")
            return RecoveryStrategy(
                can_recover=True,
                action="redirect",
                message="Veuillez compléter votre profil pour accéder aux quiz adaptatifs.",
                redirect_url="/profile",
            )

    async def handle_technical_error(
        self, error: BaseException, context: str, retry_count: int = 0
    ) -> RecoveryStrategy:
        """Retry retryable errors with exponential backoff, then fall back."""
        analysis = analyze_technical_error(error)

        if retry_count < MAX_TECHNICAL_RETRIES and analysis["isRetryable"]:
            delay = BASE_RETRY_DELAY_SECONDS * 2**retry_count
            return RecoveryStrategy(
                can_recover=True,
                action="retry",
                message=f"Erreur temporaire détectée. Nouvelle tentative dans {delay} secondes...",
                retry_after_seconds=delay,
                details={
                    "errorType": analysis["type"],
                    "retryCount": retry_count + 1,
                    "maxRetries": MAX_TECHNICAL_RETRIES,
                    "context": context,
                    "originalError": str(error),
                    "isRetryable": True,
                    "estimatedRecoveryTime": delay,
                },
            )

        high_severity = analysis["severity"] == "high"
        support_ticket_id = await self._open_support_ticket(analysis, context) if high_severity else None
        return RecoveryStrategy(
            can_recover=not high_severity,
            action="fallback",
            message=(
                "Erreur système critique détectée. Notre équipe technique a été notifiée."
                if high_severity
                else "Erreur technique temporaire. Veuillez réessayer plus tard."
            ),
            redirect_url="/support" if high_severity else "/student/dashboard",
            details={
                "errorType": analysis["type"],
                "retriesExhausted": retry_count >= MAX_TECHNICAL_RETRIES,
                "context": context,
                "fallbackReason": f"Erreur {analysis['type']} de sévérité {analysis['severity']}",
                "supportTicketId": support_ticket_id,
            },
        )

    async def handle_rate_limit_exceeded(
        self, user_id: str, limit_type: Literal["daily", "cooldown"], now: Optional[datetime] = None
    ) -> RecoveryStrategy:
        now = now or utc_now()
        try:
            wait = await self._calculate_wait_time(user_id, limit_type, now)
        except Exception as e:
            logger.error(f"Rate limit recovery failed for user {user_id}: {e}")
            return create_fallback_recovery("Erreur lors du calcul du temps d'attente")

        if limit_type == "daily":
            return RecoveryStrategy(
                can_recover=True,
                action="wait",
                message="Limite quotidienne atteinte. Revenez demain pour générer de nouveaux quiz adaptatifs.",
                retry_after_seconds=wait["secondsUntilReset"],
                details={
                    "limitType": "daily",
                    "currentUsage": wait["currentUsage"],
                    "maxUsage": wait["maxUsage"],
                    "resetTime": wait["resetTime"],
                    "suggestions": [
                        _suggestion(
                            "Quiz réguliers",
                            "Continuez à vous entraîner avec les quiz classiques",
                            "take_quiz",
                            "high",
                            action_url="/student/quizzes",
                            estimated_time_minutes=15,
                        ),
                        _suggestion(
                            "Révision des résultats",
                            "Analysez vos performances précédentes",
                            "navigate",
                            "medium",
                            action_url="/student/results",
                            estimated_time_minutes=10,
                        ),
                    ],
                    "alternativeActions": [
                        {
                            "title": "Quiz réguliers",
                            "description": "Continuez avec les quiz réguliers en attendant",
                            "actionUrl": "/student/quizzes",
                        },
                        {
                            "title": "Réviser les résultats",
                            "description": "Consultez vos résultats précédents",
                            "actionUrl": "/student/results",
                        },
                    ],
                },
            )

        remaining_minutes = math.ceil(wait["secondsUntilReset"] / 60)
        return RecoveryStrategy(
            can_recover=True,
            action="wait",
            message=(
                "Période d'attente active. Vous pourrez générer un nouveau quiz "
                f"dans {remaining_minutes} minutes."
            ),
            retry_after_seconds=wait["secondsUntilReset"],
            details={
                "limitType": "cooldown",
                "remainingMinutes": remaining_minutes,
                "lastQuizTime": wait.get("lastActionTime"),
                "suggestions": [
                    _suggestion(
                        "Révision ciblée",
                        "Profitez de cette pause pour réviser vos points faibles",
                        "navigate",
                        "high",
                        action_url="/student/study-materials",
                        estimated_time_minutes=remaining_minutes or settings.adaptive_quiz.cooldown_minutes,
                    )
                ],
                "cooldownReason": "Pour optimiser l'analyse de vos performances",
            },
        )

    @staticmethod
    def identify_missing_profile_fields(user: User) -> List[str]:
        """Missing required fields plus at most two missing optional ones."""

        def missing(field: str) -> bool:
            return not getattr(user, PROFILE_FIELD_ATTRIBUTES[field], None)

        required = [field for field in REQUIRED_PROFILE_FIELDS if missing(field)]
        optional = [field for field in OPTIONAL_PROFILE_FIELDS if missing(field)]
        return required + optional[:2]

    @staticmethod
    def calculate_profile_completion(user: User) -> int:
        completed = [attr for attr in PROFILE_FIELD_ATTRIBUTES.values() if getattr(user, attr, None)]
        return round_half_up(len(completed) / len(PROFILE_FIELD_ATTRIBUTES) * 100)

    async def _get_user_quiz_stats(self, user_id: str) -> Dict[str, Any]:
        submissions = await QuizSubmissionRepository(self.session).list_scored_for_student(user_id)
        quiz_repository = QuizRepository(self.session)
        categories = set()
        for quiz_id in {submission.quiz_id for submission in submissions}:
            quiz = await quiz_repository.get_by_id(quiz_id)
            if quiz is not None and quiz.category_id:
                categories.add(quiz.category_id)
        return {"completedQuizzes": len(submissions), "categoriesWithQuizzes": sorted(categories)}

    async def _analyze_question_availability(
        self, user_id: str, weak_categories: Sequence[str], strong_categories: Sequence[str]
    ) -> Dict[str, Any]:
        user = await UserRepository(self.session).get_by_id(user_id)
        level = (user.student_level if user else None) or "both"
        questions = QuestionRepository(self.session)

        weak = {category_id: await questions.count_available(level, category_id) for category_id in weak_categories}
        strong = {
            category_id: await questions.count_available(level, category_id) for category_id in strong_categories
        }
        return {
            "weakCategoriesAvailable": weak,
            "strongCategoriesAvailable": strong,
            "totalAvailable": sum(weak.values()) + sum(strong.values()),
            "userLevel": level,
        }

    @staticmethod
    def _adjust_question_selection(availability: Dict[str, Any]) -> Dict[str, Any]:
        if availability["totalAvailable"] < MIN_QUESTIONS_NEEDED:
            return {
                "canGenerate": False,
                "weakCategories": [],
                "strongCategories": [],
                "reason": "Pas assez de questions disponibles au total",
                "questionCounts": {},
                "config": {},
            }

        def viable(counts: Dict[str, int]) -> List[str]:
            return [
                category_id
                for category_id, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)
                if count >= 1
            ]

        weak = viable(availability["weakCategoriesAvailable"])
        strong = viable(availability["strongCategoriesAvailable"])

        weak_target, strong_target = 5, 2
        if not strong:
            weak_target, strong_target = 7, 0
        elif len(strong) == 1:
            weak_target, strong_target = 6, 1

        weak_available = sum(availability["weakCategoriesAvailable"][c] for c in weak)
        strong_available = sum(availability["strongCategoriesAvailable"][c] for c in strong)

        if weak_available < weak_target or strong_available < strong_target:
            return {
                "canGenerate": False,
                "weakCategories": weak,
                "strongCategories": strong,
                "reason": "Pas assez de questions même après ajustement",
                "questionCounts": {
                    "weakAvailable": weak_available,
                    "strongAvailable": strong_available,
                    "weakNeeded": weak_target,
                    "strongNeeded": strong_target,
                },
                "config": {},
            }

        return {
            "canGenerate": True,
            "weakCategories": weak[:3],
            "strongCategories": strong[:2],
            "reason": "Sélection ajustée selon la disponibilité des questions",
            "questionCounts": {
                "weakAvailable": weak_available,
                "strongAvailable": strong_available,
                "weakTarget": weak_target,
                "strongTarget": strong_target,
            },
            "config": {"weakQuestionsCount": weak_target, "strongQuestionsCount": strong_target},
        }

    @staticmethod
    def _question_availability_suggestions(availability: Dict[str, Any]) -> List[Dict[str, Any]]:
        suggestions = []
        if any(count < 3 for count in availability["weakCategoriesAvailable"].values()):
            suggestions.append(
                _suggestion(
                    "Complétez plus de quiz",
                    "Certaines de vos catégories faibles ont peu de questions disponibles",
                    "take_quiz",
                    "high",
                    action_url="/student/quizzes",
                    estimated_time_minutes=30,
                )
            )
        suggestions.append(
            _suggestion(
                "Explorez de nouvelles catégories",
                "Essayez des quiz dans différentes matières pour élargir vos options",
                "take_quiz",
                "medium",
                action_url="/student/quizzes?filter=new",
                estimated_time_minutes=20,
            )
        )
        return suggestions

    async def _open_support_ticket(self, analysis: Dict[str, Any], context: str) -> Optional[str]:
        """Record a critical error for the support team; returns the entry id."""
        try:
            ticket = AuditLog(
                action=AuditAction.TECHNICAL_ERROR_CRITICAL.value,
                severity=analysis["severity"],
                details={
                    "errorType": analysis["type"],
                    "context": context,
                    "severity": analysis["severity"],
                    "timestamp": utc_now().isoformat(),
                    "requiresAttention": True,
                },
            )
            self.session.add(ticket)
            await self.session.commit()
            return ticket.id
        except Exception as e:
            logger.error(f"Failed to record critical technical error: {e}")
            await self.session.rollback()
            return None

    async def _calculate_wait_time(self, user_id: str, limit_type: str, now: datetime) -> Dict[str, Any]:
        repository = AdaptiveQuizSessionRepository(self.session)
        if limit_type == "daily":
            reset = next_utc_midnight(now)
            return {
                "secondsUntilReset": math.floor((reset - now).total_seconds()),
                "currentUsage": await repository.count_created_since(user_id, start_of_utc_day(now)),
                "maxUsage": settings.adaptive_quiz.daily_limit,
                "resetTime": reset.isoformat(),
            }

        latest = await repository.get_latest_for_user(user_id)
        if latest is None:
            return {"secondsUntilReset": 0}
        cooldown_end = latest.created_at + timedelta(minutes=settings.adaptive_quiz.cooldown_minutes)
        return {
            "secondsUntilReset": max(0, math.floor((cooldown_end - now).total_seconds())),
            "lastActionTime": latest.created_at.isoformat(),
        }
