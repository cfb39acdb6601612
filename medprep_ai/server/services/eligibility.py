"""
Adaptive quiz eligibility.

Centralises the prerequisites a student must meet before generating an
adaptive quiz: enough completed quizzes, a study level, and a free slot in
the daily quota and cooldown.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.users import StudyYear, User
from medprep_ai.core.database.repositories import (
    AdaptiveQuizSessionRepository,
    QuizSubmissionRepository,
    UserRepository,
)
from medprep_ai.server.core.config import settings
from medprep_ai.server.hooks.rate_limit import next_utc_midnight, start_of_utc_day

logger = logging.getLogger(__name__)


class EligibilityService:
    def __init__(self, session: AsyncSession):
        self.session = session
        quiz_settings = settings.adaptive_quiz
        self.minimum_quizzes = quiz_settings.minimum_quizzes
        self.daily_limit = quiz_settings.daily_limit
        self.cooldown_minutes = quiz_settings.cooldown_minutes

    async def check_eligibility(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Check every prerequisite of adaptive quiz generation.

        Args:
            user_id: Student to check
            now: Reference time (naive UTC), defaults to the current time

        Returns:
            ``{canGenerate, reason, requirements, nextAvailableAt, suggestions}``
            where ``reason`` describes the first unmet prerequisite.
        """
        now = now or utc_now()
        try:
            user = await UserRepository(self.session).get_by_id(user_id)
            if user is None:
                return {"canGenerate": False, "reason": "Utilisateur non trouvé"}

            quizzes = await self._check_minimum_quizzes(user_id)
            level = self._check_student_level(user)
            daily = await self._check_daily_limit(user_id, now)
            cooldown = await self._check_cooldown(user_id, now)

            can_generate = all(check["satisfied"] for check in (quizzes, level, daily, cooldown))
            suggestions = self._build_suggestions(quizzes, level, daily, cooldown)

            reason = None
            next_available_at = None
            if not can_generate:
                reason = self._first_failure_reason(quizzes, level, daily, cooldown)
                next_available_at = self._next_available_at(daily, cooldown, now)

            return {
                "canGenerate": can_generate,
                "reason": reason,
                "requirements": {
                    "minimumQuizzes": quizzes,
                    "studentLevel": level,
                    "dailyLimit": daily,
                    "cooldown": cooldown,
                },
                "nextAvailableAt": next_available_at,
                "suggestions": suggestions or None,
            }
        except Exception as e:
            logger.error(f"Eligibility check failed for user {user_id}: {e}", exc_info=True)
            return {"canGenerate": False, "reason": "Erreur technique lors de la vérification des prérequis"}

    def get_user_requirements(self) -> Dict[str, Any]:
        return {
            "minimumQuizzes": self.minimum_quizzes,
            "studentLevelRequired": True,
            "dailyLimit": self.daily_limit,
            "cooldownMinutes": self.cooldown_minutes,
        }

    async def _check_minimum_quizzes(self, user_id: str) -> Dict[str, Any]:
        try:
            current = await QuizSubmissionRepository(self.session).count_scored_for_student(user_id)
        except Exception as e:
            logger.error(f"Error checking minimum quizzes: {e}")
            current = 0
        return {"required": self.minimum_quizzes, "current": current, "satisfied": current >= self.minimum_quizzes}

    @staticmethod
    def _check_student_level(user: User) -> Dict[str, Any]:
        study_year = user.study_year
        return {
            "required": True,
            "current": study_year or None,
            "satisfied": study_year in (StudyYear.PASS.value, StudyYear.LAS.value),
        }

    async def _check_daily_limit(self, user_id: str, now: datetime) -> Dict[str, Any]:
        try:
            used = await AdaptiveQuizSessionRepository(self.session).count_created_since(
                user_id, start_of_utc_day(now)
            )
        except Exception as e:
            # Fail closed
            logger.error(f"Error checking daily limit: {e}")
            used = self.daily_limit
        return {
            "limit": self.daily_limit,
            "used": used,
            "remaining": max(0, self.daily_limit - used),
            "satisfied": used < self.daily_limit,
        }

    async def _check_cooldown(self, user_id: str, now: datetime) -> Dict[str, Any]:
        try:
            latest = await AdaptiveQuizSessionRepository(self.session).get_latest_for_user(user_id)
        except Exception as e:
            logger.error(f"Error checking cooldown: {e}")
            return {"minutes": self.cooldown_minutes, "remainingMinutes": self.cooldown_minutes, "satisfied": False}

        if latest is None:
            return {"minutes": self.cooldown_minutes, "remainingMinutes": 0, "satisfied": True}

        elapsed = (now - latest.created_at).total_seconds() / 60
        return {
            "minutes": self.cooldown_minutes,
            "remainingMinutes": max(0, math.ceil(self.cooldown_minutes - elapsed)),
            "satisfied": elapsed >= self.cooldown_minutes,
        }

    def _first_failure_reason(self, quizzes, level, daily, cooldown) -> Optional[str]:
        if not quizzes["satisfied"]:
            return f"Vous devez compléter au moins {self.minimum_quizzes} quiz (actuellement: {quizzes['current']})"
        if not level["satisfied"]:
            return "Votre niveau d'études (PASS/LAS) doit être défini dans votre profil"
        if not daily["satisfied"]:
            return f"Limite quotidienne atteinte ({daily['used']}/{daily['limit']})"
        if not cooldown["satisfied"]:
            return f"Cooldown actif, attendez {cooldown['remainingMinutes']} minutes"
        return None

    @staticmethod
    def _build_suggestions(quizzes, level, daily, cooldown) -> List[str]:
        suggestions: List[str] = []
        if not quizzes["satisfied"]:
            needed = quizzes["required"] - quizzes["current"]
            plural = "s" if needed > 1 else ""
            suggestions.append(
                f"Complétez {needed} quiz supplémentaire{plural} pour débloquer les quiz adaptatifs"
            )
        if not level["satisfied"]:
            suggestions.append("Définissez votre niveau d'études (PASS ou LAS) dans votre profil utilisateur")
        if not daily["satisfied"]:
            suggestions.append(
                "Vous avez atteint la limite quotidienne. Revenez demain pour générer de nouveaux quiz adaptatifs"
            )
        if not cooldown["satisfied"]:
            suggestions.append(
                f"Attendez {cooldown['remainingMinutes']} minutes avant de générer un nouveau quiz adaptatif"
            )
        return suggestions

    @staticmethod
    def _next_available_at(daily: Dict[str, Any], cooldown: Dict[str, Any], now: datetime) -> datetime:
        if not daily["satisfied"]:
            return next_utc_midnight(now)
        if not cooldown["satisfied"]:
            return now + timedelta(minutes=cooldown["remainingMinutes"])
        return now
