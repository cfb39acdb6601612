"""
Rate limit service.

Presents the adaptive quiz quota of a student: whether a new quiz can be
generated, when the next one will be possible and how much the feature has
been used recently.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.repositories import AdaptiveQuizSessionRepository
from medprep_ai.core.utils import round_half_up
from medprep_ai.server.core.config import settings
from medprep_ai.server.hooks.rate_limit import get_rate_limit_info, next_utc_midnight, start_of_utc_day


def _plural(value: int) -> str:
    return "s" if value > 1 else ""


class RateLimitService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def check_rate_limit(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Whether ``user_id`` may generate an adaptive quiz now.

        When blocked, ``reason`` is ``daily_limit_exceeded`` or
        ``cooldown_active`` and ``nextAvailableAt`` says when it will be
        possible again.
        """
        now = now or utc_now()
        info = await get_rate_limit_info(self.session, user_id, now)

        if info["dailyLimitReached"]:
            return {
                "canGenerate": False,
                "reason": "daily_limit_exceeded",
                "dailyCount": info["dailyCount"],
                "dailyLimit": info["dailyLimit"],
                "hoursUntilReset": info["hoursUntilReset"],
                "nextAvailableAt": next_utc_midnight(now),
            }

        if info["cooldownActive"]:
            return {
                "canGenerate": False,
                "reason": "cooldown_active",
                "dailyCount": info["dailyCount"],
                "dailyLimit": info["dailyLimit"],
                "remainingCooldownMinutes": info["remainingCooldownMinutes"],
                "nextAvailableAt": now + timedelta(minutes=info["remainingCooldownMinutes"]),
            }

        return {"canGenerate": True, "dailyCount": info["dailyCount"], "dailyLimit": info["dailyLimit"]}

    @staticmethod
    def get_rate_limit_error_message(status: Dict[str, Any]) -> str:
        reason = status.get("reason")
        if reason == "daily_limit_exceeded":
            hours = status.get("hoursUntilReset") or 0
            return (
                f"Vous avez atteint la limite quotidienne de {status.get('dailyLimit')} quiz adaptatifs. "
                f"Vous pourrez générer un nouveau quiz dans {hours} heure{_plural(hours)}."
            )
        if reason == "cooldown_active":
            minutes = status.get("remainingCooldownMinutes") or 0
            return (
                f"Vous devez attendre {minutes} minute{_plural(minutes)} "
                "avant de pouvoir générer un nouveau quiz adaptatif."
            )
        return "Limitation de taux inconnue"

    async def get_user_usage_stats(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        today = start_of_utc_day(now)
        repository = AdaptiveQuizSessionRepository(self.session)

        today_count = await repository.count_created_since(user_id, today)
        week_count = await repository.count_created_since(user_id, today - timedelta(days=7))
        month_count = await repository.count_created_since(user_id, today - timedelta(days=30))

        return {
            "today": today_count,
            "thisWeek": week_count,
            "thisMonth": month_count,
            "dailyLimit": settings.adaptive_quiz.daily_limit,
            "weeklyAverage": round_half_up(week_count / 7 * 10) / 10,
            "monthlyAverage": round_half_up(month_count / 30 * 10) / 10,
        }
