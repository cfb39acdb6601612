"""
Error management for AI quiz generation.

AI generation fails in ways of its own (provider outages, rate limits,
unusable model output, invalid configuration...). Each failure is
classified into an ``AIQuizErrorType``, logged through the adaptive quiz
error log and answered with a French user message, a recovery strategy and
fallback options.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now

from .error_recovery import RecoveryStrategy
from .errors import AdaptiveQuizErrorType, ErrorHandlingService

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_RETRY_DELAY_MS = 2000
MAX_RETRY_DELAY_MS = 30000
RATE_LIMIT_MIN_DELAY_MS = 60000

Severity = Literal["low", "medium", "high", "critical"]


class AIQuizErrorType(str, Enum):
    AI_API_UNAVAILABLE = "ai_api_unavailable"
    AI_RATE_LIMIT_EXCEEDED = "ai_rate_limit_exceeded"
    AI_INVALID_RESPONSE = "ai_invalid_response"
    AI_TIMEOUT = "ai_timeout"
    AI_QUOTA_EXCEEDED = "ai_quota_exceeded"
    AI_MODEL_OVERLOADED = "ai_model_overloaded"

    VALIDATION_FAILED = "validation_failed"
    INVALID_JSON_RESPONSE = "invalid_json_response"
    INSUFFICIENT_QUALITY = "insufficient_quality"
    CONTENT_POLICY_VIOLATION = "content_policy_violation"

    INVALID_GENERATION_CONFIG = "invalid_generation_config"
    MISSING_REQUIRED_PARAMETERS = "missing_required_parameters"
    UNSUPPORTED_STUDENT_LEVEL = "unsupported_student_level"
    INVALID_QUESTION_COUNT = "invalid_question_count"

    DATABASE_CREATION_FAILED = "database_creation_failed"
    CATEGORY_NOT_FOUND = "category_not_found"
    QUIZ_CREATION_FAILED = "quiz_creation_failed"
    QUESTION_CREATION_FAILED = "question_creation_failed"


T = AIQuizErrorType

USER_MESSAGES: Dict[str, str] = {
    T.AI_API_UNAVAILABLE: "Le service de génération IA est temporairement indisponible. Veuillez réessayer dans quelques minutes.",
    T.AI_RATE_LIMIT_EXCEEDED: "Trop de demandes ont été effectuées. Veuillez attendre avant de générer un nouveau quiz.",
    T.AI_INVALID_RESPONSE: "La génération IA a produit une réponse invalide. Une nouvelle tentative va être effectuée automatiquement.",
    T.AI_TIMEOUT: "La génération a pris trop de temps. Essayez de réduire le nombre de questions ou simplifier le sujet.",
    T.AI_QUOTA_EXCEEDED: "Le quota d'utilisation de l'IA a été atteint. Veuillez réessayer plus tard.",
    T.AI_MODEL_OVERLOADED: "Le modèle IA est surchargé. Veuillez patienter quelques minutes avant de réessayer.",
    T.VALIDATION_FAILED: "Le contenu généré ne respecte pas les critères de qualité. Une nouvelle génération va être tentée.",
    T.INVALID_JSON_RESPONSE: "Format de réponse invalide de l'IA. Le système va automatiquement réessayer.",
    T.INSUFFICIENT_QUALITY: "La qualité du contenu généré est insuffisante. Essayez d'ajuster vos paramètres.",
    T.CONTENT_POLICY_VIOLATION: "Le contenu généré ne respecte pas les politiques de contenu. Veuillez modifier votre sujet.",
    T.INVALID_GENERATION_CONFIG: "Les paramètres de génération sont invalides. Veuillez vérifier votre configuration.",
    T.MISSING_REQUIRED_PARAMETERS: "Des paramètres obligatoires sont manquants. Veuillez compléter le formulaire.",
    T.UNSUPPORTED_STUDENT_LEVEL: "Le niveau étudiant spécifié n'est pas supporté.",
    T.INVALID_QUESTION_COUNT: "Le nombre de questions doit être entre 5 et 20.",
    T.DATABASE_CREATION_FAILED: "Erreur lors de la sauvegarde en base de données. Veuillez réessayer.",
    T.CATEGORY_NOT_FOUND: "La catégorie sélectionnée n'existe pas ou a été supprimée.",
    T.QUIZ_CREATION_FAILED: "Erreur lors de la création du quiz. Veuillez réessayer.",
    T.QUESTION_CREATION_FAILED: "Erreur lors de la création des questions. Veuillez réessayer.",
}
DEFAULT_USER_MESSAGE = "Une erreur inattendue s'est produite lors de la génération du quiz."

RETRYABLE_ERRORS = frozenset(
    {
        T.AI_TIMEOUT,
        T.AI_MODEL_OVERLOADED,
        T.AI_INVALID_RESPONSE,
        T.INVALID_JSON_RESPONSE,
        T.DATABASE_CREATION_FAILED,
        T.QUIZ_CREATION_FAILED,
        T.QUESTION_CREATION_FAILED,
    }
)

SEVERITIES: Dict[str, Severity] = {
    T.AI_API_UNAVAILABLE: "high",
    T.AI_RATE_LIMIT_EXCEEDED: "medium",
    T.AI_INVALID_RESPONSE: "medium",
    T.AI_TIMEOUT: "medium",
    T.AI_QUOTA_EXCEEDED: "high",
    T.AI_MODEL_OVERLOADED: "medium",
    T.VALIDATION_FAILED: "low",
    T.INVALID_JSON_RESPONSE: "medium",
    T.INSUFFICIENT_QUALITY: "low",
    T.CONTENT_POLICY_VIOLATION: "high",
    T.INVALID_GENERATION_CONFIG: "low",
    T.MISSING_REQUIRED_PARAMETERS: "low",
    T.UNSUPPORTED_STUDENT_LEVEL: "low",
    T.INVALID_QUESTION_COUNT: "low",
    T.DATABASE_CREATION_FAILED: "high",
    T.CATEGORY_NOT_FOUND: "medium",
    T.QUIZ_CREATION_FAILED: "high",
    T.QUESTION_CREATION_FAILED: "high",
}

MANUAL_QUIZ_OPTION = {
    "title": "Créer un quiz manuellement",
    "description": "Créez votre quiz question par question avec l'éditeur manuel",
    "actionUrl": "/admin/collections/quizzes/create",
}

VALID_LEVELS = ("PASS", "LAS", "both")
VALID_DIFFICULTIES = ("easy", "medium", "hard")
REQUIRED_CONFIG_FIELDS = ("subject", "categoryId", "studentLevel", "questionCount")

# Process wide, reset by ``reset_error_metrics``.
_error_metrics: Counter = Counter()


def is_retryable(error_type: str) -> bool:
    return error_type in RETRYABLE_ERRORS


def get_severity(error_type: str) -> Severity:
    return SEVERITIES.get(error_type, "medium")


class AIQuizError(BaseModel):
    """A classified AI quiz generation failure; serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: AIQuizErrorType
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
    user_id: Optional[str] = None
    retryable: bool = False
    severity: Severity = "medium"
    suggested_action: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @classmethod
    def of(cls, error_type: AIQuizErrorType, message: str, **kwargs) -> "AIQuizError":
        kwargs.setdefault("retryable", is_retryable(error_type))
        kwargs.setdefault("severity", get_severity(error_type))
        return cls(type=error_type, message=message, **kwargs)


class AIQuizGenerationError(Exception):
    """Raised by the AI quiz services with the classified error attached."""

    def __init__(self, error: AIQuizError, operation: str = "generation", attempts: int = 0):
        self.error = error
        self.operation = operation
        self.attempts = attempts
        super().__init__(error.message)


def calculate_retry_delay(attempt: int) -> int:
    """Backoff in milliseconds: ``min(2000 * 2^attempt, 30000)`` plus up to 10% jitter."""
    delay = min(BASE_RETRY_DELAY_MS * 2**attempt, MAX_RETRY_DELAY_MS)
    return int(delay + random.random() * 0.1 * delay)


def classify_error(message: str, operation: str) -> AIQuizErrorType:
    """Error type of a raw failure message raised during ``operation``."""
    lower = message.lower()
    if "rate limit" in lower or "quota" in lower:
        return T.AI_RATE_LIMIT_EXCEEDED
    if "timeout" in lower or "timed out" in lower:
        return T.AI_TIMEOUT
    if "unavailable" in lower or "service" in lower:
        return T.AI_API_UNAVAILABLE
    if "overloaded" in lower or "busy" in lower:
        return T.AI_MODEL_OVERLOADED

    if operation == "validation":
        return T.INVALID_JSON_RESPONSE if "json" in lower else T.VALIDATION_FAILED
    if operation == "config":
        if "missing" in lower or "required" in lower:
            return T.MISSING_REQUIRED_PARAMETERS
        return T.INVALID_GENERATION_CONFIG
    if operation == "creation":
        if "category" in lower:
            return T.CATEGORY_NOT_FOUND
        if "quiz" in lower:
            return T.QUIZ_CREATION_FAILED
        if "question" in lower:
            return T.QUESTION_CREATION_FAILED
        return T.DATABASE_CREATION_FAILED
    return T.AI_API_UNAVAILABLE


def analyze_api_error(error: BaseException) -> AIQuizError:
    """Classify a failure raised by the model provider."""
    message = str(error)
    lower = message.lower()
    retry_after: Optional[int] = None
    if "rate limit" in lower or "429" in lower:
        error_type = T.AI_RATE_LIMIT_EXCEEDED
        retry_after = 60
    elif "timeout" in lower or "504" in lower:
        error_type = T.AI_TIMEOUT
    elif "quota" in lower or "billing" in lower:
        error_type = T.AI_QUOTA_EXCEEDED
    elif "overloaded" in lower or "503" in lower:
        error_type = T.AI_MODEL_OVERLOADED
        retry_after = 30
    elif "502" in lower or "500" in lower:
        error_type = T.AI_API_UNAVAILABLE
    else:
        error_type = T.AI_INVALID_RESPONSE
    return AIQuizError.of(
        error_type, message, details={"errorClass": type(error).__name__}, retry_after_seconds=retry_after
    )


def identify_missing_fields(config: Dict[str, Any]) -> List[str]:
    return [field for field in REQUIRED_CONFIG_FIELDS if not config.get(field)]


def identify_invalid_fields(config: Dict[str, Any]) -> List[str]:
    invalid = []
    count = config.get("questionCount")
    if count and (count < 5 or count > 20):
        invalid.append("questionCount")
    if config.get("studentLevel") and config["studentLevel"] not in VALID_LEVELS:
        invalid.append("studentLevel")
    if config.get("difficulty") and config["difficulty"] not in VALID_DIFFICULTIES:
        invalid.append("difficulty")
    return invalid


class AIQuizErrorManager:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.error_handling = ErrorHandlingService(session)

    async def handle_ai_quiz_error(
        self,
        error: Union[BaseException, str, AIQuizError],
        operation: str = "generation",
        user_id: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        attempt: int = 0,
    ) -> Dict[str, Any]:
        """
        Classify, log and answer an AI quiz failure.

        Args:
            error: Raw exception, message, or already classified error
            operation: ``generation``, ``validation``, ``creation`` or ``config``
            user_id: Requesting user
            config: Generation configuration in use
            attempt: Attempts already made

        Returns:
            ``{success: False, error{type, message, userMessage, details,
            suggestion, timestamp}, recovery, canRetry, retryAfterSeconds,
            fallbackOptions}``
        """
        try:
            ai_error = self.normalize_error(error, operation)
            if user_id and not ai_error.user_id:
                ai_error.user_id = user_id
            _error_metrics[ai_error.type.value] += 1
            await self._log(ai_error, operation, config)

            recovery = self.determine_recovery_strategy(ai_error, user_id)
            return {
                "success": False,
                "error": {
                    "type": ai_error.type.value,
                    "message": ai_error.message,
                    "userMessage": USER_MESSAGES.get(ai_error.type, DEFAULT_USER_MESSAGE),
                    "details": ai_error.details,
                    "suggestion": ai_error.suggested_action,
                    "timestamp": ai_error.timestamp,
                },
                "recovery": recovery.to_dict() if recovery else None,
                "canRetry": ai_error.retryable and attempt < MAX_RETRIES,
                "retryAfterSeconds": ai_error.retry_after_seconds,
                "fallbackOptions": self.generate_fallback_options(ai_error),
            }
        except Exception as e:
            logger.error(f"Error while handling AI quiz error: {e}", exc_info=True)
            return {
                "success": False,
                "error": {
                    "type": T.AI_API_UNAVAILABLE.value,
                    "message": "Erreur système lors de la gestion d'erreur",
                    "userMessage": "Une erreur technique s'est produite. Veuillez réessayer plus tard.",
                    "timestamp": utc_now().isoformat(),
                },
                "canRetry": False,
            }

    async def handle_api_error(self, error: BaseException, user_id: Optional[str] = None, attempt: int = 0):
        return await self.handle_ai_quiz_error(analyze_api_error(error), "generation", user_id, attempt=attempt)

    async def handle_validation_error(
        self, score: int, issues: List[Dict[str, Any]], user_id: Optional[str] = None, attempt: int = 0
    ) -> Dict[str, Any]:
        ai_error = AIQuizError.of(
            T.VALIDATION_FAILED,
            f"Validation échouée avec un score de {score}/100",
            details={
                "score": score,
                "issues": issues,
                "criticalIssues": sum(1 for i in issues if i.get("severity") == "critical"),
                "majorIssues": sum(1 for i in issues if i.get("severity") == "major"),
            },
            retryable=score >= 30,
            severity="high" if score < 30 else "medium",
            suggested_action=(
                "Ajuster les paramètres de génération"
                if score < 50
                else "Régénérer avec des instructions plus précises"
            ),
        )
        return await self.handle_ai_quiz_error(ai_error, "validation", user_id, attempt=attempt)

    async def handle_configuration_error(
        self, config: Dict[str, Any], validation_errors: List[str], user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        ai_error = AIQuizError.of(
            T.INVALID_GENERATION_CONFIG,
            "Configuration de génération invalide",
            details={
                "config": config,
                "validationErrors": validation_errors,
                "missingFields": identify_missing_fields(config),
                "invalidFields": identify_invalid_fields(config),
            },
            retryable=False,
            suggested_action="Corriger les paramètres de configuration",
        )
        return await self.handle_ai_quiz_error(ai_error, "config", user_id, config)

    def attempt_auto_recovery(
        self, error_type: AIQuizErrorType, attempt: int = 0, config: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Decide whether and when a failed generation is retried.

        Returns:
            ``{success, shouldRetry, retryDelay?, result?}`` where
            ``retryDelay`` is in milliseconds and ``result.adjustedConfig``
            carries a simplified configuration after a validation failure
        """
        if error_type == T.AI_RATE_LIMIT_EXCEEDED:
            return {
                "success": False,
                "shouldRetry": attempt < MAX_RETRIES,
                "retryDelay": max(RATE_LIMIT_MIN_DELAY_MS, calculate_retry_delay(attempt)),
            }
        if error_type in (T.AI_TIMEOUT, T.AI_MODEL_OVERLOADED):
            return {"success": False, "shouldRetry": attempt < MAX_RETRIES, "retryDelay": calculate_retry_delay(attempt)}
        if error_type == T.VALIDATION_FAILED:
            if config and attempt < 2:
                adjusted = {
                    **config,
                    "questionCount": max(5, int(config.get("questionCount", 5) * 0.8)),
                    "difficulty": "medium" if config.get("difficulty") == "hard" else "easy",
                }
                return {"success": True, "shouldRetry": True, "result": {"adjustedConfig": adjusted}}
            return {"success": False, "shouldRetry": False}
        if error_type in (T.INVALID_JSON_RESPONSE, T.AI_INVALID_RESPONSE):
            return {"success": False, "shouldRetry": attempt < MAX_RETRIES, "retryDelay": calculate_retry_delay(attempt)}
        return {"success": False, "shouldRetry": False}

    @staticmethod
    def normalize_error(error: Union[BaseException, str, AIQuizError], operation: str) -> AIQuizError:
        if isinstance(error, AIQuizError):
            return error
        if isinstance(error, AIQuizGenerationError):
            return error.error
        message = error if isinstance(error, str) else str(error)
        details = None if isinstance(error, str) else {"errorClass": type(error).__name__}
        return AIQuizError.of(classify_error(message, operation), message, details=details)

    @staticmethod
    def determine_recovery_strategy(error: AIQuizError, user_id: Optional[str]) -> Optional[RecoveryStrategy]:
        if not user_id:
            return None
        if error.type == T.AI_RATE_LIMIT_EXCEEDED:
            return RecoveryStrategy(
                can_recover=True,
                action="wait",
                message="Limite de taux atteinte. Veuillez attendre avant de réessayer.",
                retry_after_seconds=error.retry_after_seconds or 60,
            )
        if error.type == T.VALIDATION_FAILED:
            return RecoveryStrategy(
                can_recover=True,
                action="adjust",
                message="Ajustement automatique des paramètres de génération.",
                details={"suggestion": "Réduire la complexité ou ajuster la difficulté"},
            )
        if error.type == T.CATEGORY_NOT_FOUND:
            return RecoveryStrategy(
                can_recover=True,
                action="redirect",
                message="Catégorie introuvable. Redirection vers la gestion des catégories.",
                redirect_url="/admin/collections/categories",
            )
        return None

    @staticmethod
    def generate_fallback_options(error: AIQuizError) -> List[Dict[str, str]]:
        options = [dict(MANUAL_QUIZ_OPTION)]
        if error.type in (T.AI_API_UNAVAILABLE, T.AI_TIMEOUT):
            options.append(
                {
                    "title": "Utiliser un modèle de quiz",
                    "description": "Partez d'un modèle existant et adaptez-le à vos besoins",
                    "actionUrl": "/admin/quiz-templates",
                }
            )
        elif error.type in (T.VALIDATION_FAILED, T.INSUFFICIENT_QUALITY):
            options.append(
                {
                    "title": "Ajuster les paramètres",
                    "description": "Modifiez le sujet, la difficulté ou le nombre de questions",
                    "actionUrl": "/admin/ai-quiz-generator?retry=true",
                }
            )
        elif error.type == T.CATEGORY_NOT_FOUND:
            options.append(
                {
                    "title": "Gérer les catégories",
                    "description": "Créez ou modifiez les catégories disponibles",
                    "actionUrl": "/admin/collections/categories",
                }
            )
        return options

    async def _log(self, error: AIQuizError, operation: str, config: Optional[Dict[str, Any]]) -> None:
        logger.warning(f"AI quiz error {error.type.value} during {operation}: {error.message}")
        await self.error_handling.log_error(
            {
                "type": AdaptiveQuizErrorType.TECHNICAL_ERROR.value,
                "message": f"AI Quiz Error: {error.message}",
                "details": {
                    "aiQuizErrorType": error.type.value,
                    "aiQuizErrorDetails": error.details,
                    "operation": operation,
                    "config": config,
                    "severity": error.severity,
                    "retryable": error.retryable,
                },
                "timestamp": error.timestamp,
                "userId": error.user_id,
                "context": f"ai_quiz_{operation}",
            }
        )


def get_error_metrics() -> Dict[str, int]:
    return dict(_error_metrics)


def reset_error_metrics() -> None:
    _error_metrics.clear()
