"""
Adaptive quiz error manager.

Single entry point used by the endpoints when an adaptive quiz operation
fails: the error is normalised, written to the audit log, paired with a
recovery strategy and returned in the client error format.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import timedelta
from typing import Any, Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.audit_logs import AuditAction
from medprep_ai.core.database.repositories import AuditLogRepository, QuestionRepository, UserRepository

from .error_recovery import ErrorRecoveryService, RecoveryStrategy
from .errors import AdaptiveQuizErrorType as E
from .errors import AdaptiveQuizException, ErrorHandlingService

logger = logging.getLogger(__name__)

ERROR_PATTERNS = (
    (re.compile(r"insufficient.?data", re.IGNORECASE), E.INSUFFICIENT_DATA),
    (re.compile(r"insufficient.?questions", re.IGNORECASE), E.INSUFFICIENT_QUESTIONS),
    (re.compile(r"level.?not.?set", re.IGNORECASE), E.LEVEL_NOT_SET),
    (re.compile(r"daily.?limit", re.IGNORECASE), E.DAILY_LIMIT_EXCEEDED),
    (re.compile(r"cooldown", re.IGNORECASE), E.COOLDOWN_ACTIVE),
    (re.compile(r"session.?not.?found", re.IGNORECASE), E.SESSION_NOT_FOUND),
    (re.compile(r"session.?expired", re.IGNORECASE), E.SESSION_EXPIRED),
    (re.compile(r"unauthorized|permission", re.IGNORECASE), E.UNAUTHORIZED_ACCESS),
    (re.compile(r"validation", re.IGNORECASE), E.VALIDATION_ERROR),
    (re.compile(r"database|connection", re.IGNORECASE), E.DATABASE_ERROR),
)

TIMEFRAMES = {"hour": timedelta(hours=1), "day": timedelta(days=1), "week": timedelta(weeks=1)}

AUTO_RECOVERY_MAX_RETRIES = 2
MIN_QUESTIONS_FOR_REDUCED_QUIZ = 5


def map_error_to_adaptive_type(error: BaseException) -> str:
    if isinstance(error, AdaptiveQuizException):
        return error.error_type
    message = str(error)
    for pattern, error_type in ERROR_PATTERNS:
        if pattern.search(message):
            return error_type.value
    return E.TECHNICAL_ERROR.value


class AdaptiveQuizErrorManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.error_handling = ErrorHandlingService(session)
        self.recovery = ErrorRecoveryService(session)

    async def handle_error(
        self,
        error: Union[BaseException, str, Dict[str, Any]],
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Handle an adaptive quiz error end to end.

        Args:
            error: An error code, an exception or an already structured error
            context: Optional ``userId``, ``sessionId``, ``operation``,
                ``request`` and recovery hints (``weakCategories``,
                ``strongCategories``, ``retryCount``)

        Returns:
            ``{success: False, error, recovery, canRetry, retryAfterSeconds}``
        """
        context = context or {}
        try:
            structured = self._normalize(error, context)
            await self.error_handling.log_error(structured, context.get("request"))

            recovery = await self._get_recovery_strategy(structured, context)
            frontend = self.error_handling.map_backend_error_to_frontend(structured)["error"]

            return {
                "success": False,
                "error": {
                    "type": structured["type"],
                    "message": frontend["message"],
                    "details": frontend["details"],
                    "suggestion": frontend["suggestion"],
                    "actionUrl": frontend["actionUrl"],
                    "timestamp": frontend["timestamp"],
                },
                "recovery": recovery.to_dict() if recovery else None,
                "canRetry": bool(recovery and recovery.can_recover),
                "retryAfterSeconds": recovery.retry_after_seconds if recovery else None,
            }
        except Exception as e:
            logger.error(f"Error in error management: {e}", exc_info=True)
            return {
                "success": False,
                "error": {
                    "type": E.TECHNICAL_ERROR.value,
                    "message": "Erreur technique lors de la gestion d'erreur",
                    "timestamp": utc_now().isoformat(),
                },
                "canRetry": False,
            }

    async def handle_quiz_generation_error(self, error, user_id: str, context: Optional[Dict[str, Any]] = None):
        return await self.handle_error(error, {"userId": user_id, "operation": "quiz_generation", **(context or {})})

    async def handle_result_submission_error(
        self, error, user_id: str, session_id: str, context: Optional[Dict[str, Any]] = None
    ):
        return await self.handle_error(
            error,
            {"userId": user_id, "sessionId": session_id, "operation": "result_submission", **(context or {})},
        )

    async def handle_eligibility_error(self, error, user_id: str, context: Optional[Dict[str, Any]] = None):
        return await self.handle_error(error, {"userId": user_id, "operation": "eligibility_check", **(context or {})})

    async def can_auto_recover(self, error_type: str, context: Optional[Dict[str, Any]] = None) -> bool:
        if error_type == E.INSUFFICIENT_QUESTIONS:
            user_id = (context or {}).get("userId")
            return await self._can_adjust_question_selection(user_id) if user_id else False
        return error_type in (E.TECHNICAL_ERROR, E.DATABASE_ERROR)

    async def attempt_auto_recovery(self, error_type: str, context: Dict[str, Any]) -> Dict[str, Any]:
        """Try to recover without user action.

        Returns:
            ``{success, result?, newError?}``
        """
        try:
            if error_type == E.INSUFFICIENT_QUESTIONS:
                recovery = await self.recovery.handle_insufficient_questions(
                    context["userId"], context.get("weakCategories", []), context.get("strongCategories", [])
                )
                if recovery.can_recover and recovery.fallback_data:
                    return {"success": True, "result": recovery.fallback_data}
                return {"success": False}

            if error_type in (E.TECHNICAL_ERROR, E.DATABASE_ERROR):
                retry_count = context.get("retryCount", 0)
                if retry_count >= AUTO_RECOVERY_MAX_RETRIES:
                    return {"success": False}
                await asyncio.sleep(2**retry_count)
                return {"success": True, "result": {"shouldRetry": True, "retryCount": retry_count + 1}}

            return {"success": False}
        except Exception as e:
            logger.error(f"Auto recovery failed: {e}")
            return {
                "success": False,
                "newError": self.error_handling.create_adaptive_quiz_error(
                    E.TECHNICAL_ERROR.value,
                    {"recoveryError": str(e)},
                    context.get("userId"),
                    context.get("sessionId"),
                    "auto_recovery",
                ),
            }

    async def get_error_metrics(self, timeframe: str = "day") -> Dict[str, Any]:
        """Aggregate the adaptive quiz errors logged during ``timeframe``."""
        since = utc_now() - TIMEFRAMES.get(timeframe, TIMEFRAMES["day"])
        try:
            logs = await AuditLogRepository(self.session).list_by_action_since(
                AuditAction.ADAPTIVE_QUIZ_ERROR.value, since
            )
        except Exception as e:
            logger.error(f"Error getting error metrics: {e}")
            return {"totalErrors": 0, "errorsByType": {}, "recoverySuccessRate": 0, "mostCommonErrors": []}

        errors_by_type: Dict[str, int] = {}
        recovery_attempts = 0
        recovery_successes = 0
        for log in logs:
            details = log.details or {}
            error_type = details.get("errorType")
            if error_type:
                errors_by_type[error_type] = errors_by_type.get(error_type, 0) + 1
            if details.get("recovery"):
                recovery_attempts += 1
                if details["recovery"].get("success"):
                    recovery_successes += 1

        total = len(logs)
        most_common = sorted(
            (
                {"type": error_type, "count": count, "percentage": count / total * 100}
                for error_type, count in errors_by_type.items()
            ),
            key=lambda item: item["count"],
            reverse=True,
        )[:5]
        return {
            "totalErrors": total,
            "errorsByType": errors_by_type,
            "recoverySuccessRate": recovery_successes / recovery_attempts if recovery_attempts else 0,
            "mostCommonErrors": most_common,
        }

    def _normalize(self, error: Union[BaseException, str, Dict[str, Any]], context: Dict[str, Any]) -> Dict[str, Any]:
        user_id = context.get("userId")
        session_id = context.get("sessionId")
        operation = context.get("operation")
        if isinstance(error, str):
            return self.error_handling.create_adaptive_quiz_error(error, None, user_id, session_id, operation)
        if isinstance(error, AdaptiveQuizException):
            return self.error_handling.create_adaptive_quiz_error(
                error.error_type, error.details, user_id, session_id, operation
            )
        if isinstance(error, BaseException):
            return self.error_handling.create_adaptive_quiz_error(
                map_error_to_adaptive_type(error),
                {"originalMessage": str(error)},
                user_id,
                session_id,
                operation,
            )
        return error

    async def _get_recovery_strategy(
        self, error: Dict[str, Any], context: Dict[str, Any]
    ) -> Optional[RecoveryStrategy]:
        user_id = context.get("userId")
        if not user_id:
            return None

        error_type = error["type"]
        try:
            if error_type == E.INSUFFICIENT_DATA:
                return await self.recovery.handle_insufficient_data(user_id)
            if error_type == E.INSUFFICIENT_QUESTIONS:
                return await self.recovery.handle_insufficient_questions(
                    user_id, context.get("weakCategories", []), context.get("strongCategories", [])
                )
            if error_type in (E.PROFILE_INCOMPLETE, E.LEVEL_NOT_SET):
                return await self.recovery.handle_profile_incomplete(user_id)
            if error_type == E.DAILY_LIMIT_EXCEEDED:
                return await self.recovery.handle_rate_limit_exceeded(user_id, "daily")
            if error_type == E.COOLDOWN_ACTIVE:
                return await self.recovery.handle_rate_limit_exceeded(user_id, "cooldown")
            if error_type in (E.TECHNICAL_ERROR, E.DATABASE_ERROR):
                original = (error.get("details") or {}).get("originalMessage") or error["message"]
                return await self.recovery.handle_technical_error(
                    RuntimeError(original), context.get("operation") or "unknown", context.get("retryCount", 0)
                )
        except Exception as e:
            logger.error(f"Error getting recovery strategy: {e}")
        return None

    async def _can_adjust_question_selection(self, user_id: str) -> bool:
        try:
            user = await UserRepository(self.session).get_by_id(user_id)
            level = user.student_level if user else None
            available = await QuestionRepository(self.session).count_available(level)
        except Exception as e:
            logger.warning(f"Could not count questions for user {user_id}: {e}")
            return False
        return available >= MIN_QUESTIONS_FOR_REDUCED_QUIZ
