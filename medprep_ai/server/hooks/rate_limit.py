"""
Adaptive quiz rate limiting.

Runs before an adaptive quiz session is created: a student may generate at
most ``ADAPTIVE_QUIZ_DAILY_LIMIT`` quizzes per UTC day and must wait
``ADAPTIVE_QUIZ_COOLDOWN_MINUTES`` between two of them.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.repositories import AdaptiveQuizSessionRepository
from medprep_ai.server.core.config import settings

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when a student may not create a new adaptive session yet.

    The message is ``daily_limit_exceeded:{hours}`` or
    ``cooldown_active:{minutes}``.
    """

    def __init__(self, reason: str, value: int):
        self.reason = reason
        self.value = value
        super().__init__(f"{reason}:{value}")


def start_of_utc_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_utc_midnight(now: datetime) -> datetime:
    return start_of_utc_day(now) + timedelta(days=1)


def hours_until_reset(now: datetime) -> int:
    return math.ceil((next_utc_midnight(now) - now).total_seconds() / 3600)


def remaining_cooldown_minutes(last_created_at: datetime, now: datetime, cooldown_minutes: int) -> int:
    """Whole minutes left before the cooldown ends, 0 once it is over."""
    elapsed = (now - last_created_at).total_seconds() / 60
    if elapsed >= cooldown_minutes:
        return 0
    return math.ceil(cooldown_minutes - elapsed)


async def check_daily_limit(session: AsyncSession, user_id: str, now: Optional[datetime] = None) -> None:
    now = now or utc_now()
    daily_limit = settings.adaptive_quiz.daily_limit
    count = await AdaptiveQuizSessionRepository(session).count_created_since(user_id, start_of_utc_day(now))
    if count >= daily_limit:
        raise RateLimitExceeded("daily_limit_exceeded", hours_until_reset(now))


async def check_cooldown(session: AsyncSession, user_id: str, now: Optional[datetime] = None) -> None:
    now = now or utc_now()
    latest = await AdaptiveQuizSessionRepository(session).get_latest_for_user(user_id)
    if latest is None:
        return
    remaining = remaining_cooldown_minutes(latest.created_at, now, settings.adaptive_quiz.cooldown_minutes)
    if remaining > 0:
        raise RateLimitExceeded("cooldown_active", remaining)


async def enforce_rate_limit(session: AsyncSession, user_id: Optional[str], now: Optional[datetime] = None) -> None:
    """Hook run before an adaptive session is created.

    Args:
        session: Database session
        user_id: Owner of the session being created
        now: Reference time (naive UTC), defaults to the current time

    Raises:
        ValueError: If no user is given
        RateLimitExceeded: If the daily limit is reached or the cooldown runs
    """
    if not user_id:
        raise ValueError("User ID is required for rate limiting")
    await check_daily_limit(session, user_id, now)
    await check_cooldown(session, user_id, now)


async def get_rate_limit_info(session: AsyncSession, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Current quota usage of a user.

    Returns:
        ``{dailyCount, dailyLimit, dailyLimitReached, cooldownActive,
        remainingCooldownMinutes, hoursUntilReset, canGenerate}``
    """
    now = now or utc_now()
    quiz_settings = settings.adaptive_quiz
    repository = AdaptiveQuizSessionRepository(session)

    daily_count = await repository.count_created_since(user_id, start_of_utc_day(now))
    daily_limit_reached = daily_count >= quiz_settings.daily_limit

    remaining = 0
    latest = await repository.get_latest_for_user(user_id)
    if latest is not None:
        remaining = remaining_cooldown_minutes(latest.created_at, now, quiz_settings.cooldown_minutes)
    cooldown_active = remaining > 0

    return {
        "dailyCount": daily_count,
        "dailyLimit": quiz_settings.daily_limit,
        "dailyLimitReached": daily_limit_reached,
        "cooldownActive": cooldown_active,
        "remainingCooldownMinutes": remaining,
        "hoursUntilReset": hours_until_reset(now),
        "canGenerate": not daily_limit_reached and not cooldown_active,
    }
