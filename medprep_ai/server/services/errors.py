"""
Adaptive quiz error catalogue.

This module defines the error codes of the adaptive quiz feature, their
French user messages, the HTTP status each one maps to and the
ErrorHandlingService that builds, classifies and records structured errors.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database.entities.audit_logs import AuditAction, AuditLog, AuditSeverity

logger = logging.getLogger(__name__)


class AdaptiveQuizErrorType(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    INSUFFICIENT_QUESTIONS = "insufficient_questions"
    PROFILE_INCOMPLETE = "profile_incomplete"
    LEVEL_NOT_SET = "level_not_set"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    COOLDOWN_ACTIVE = "cooldown_active"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_EXPIRED = "session_expired"
    SESSION_ALREADY_COMPLETED = "session_already_completed"
    INVALID_SESSION_OWNER = "invalid_session_owner"
    TECHNICAL_ERROR = "technical_error"
    DATABASE_ERROR = "database_error"
    VALIDATION_ERROR = "validation_error"
    AUTHENTICATION_REQUIRED = "authentication_required"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    CATEGORY_NOT_FOUND = "category_not_found"
    INVALID_CATEGORY_CONFIGURATION = "invalid_category_configuration"


E = AdaptiveQuizErrorType

ERROR_MESSAGES: Dict[str, str] = {
    E.INSUFFICIENT_DATA: "Vous devez compléter au moins 3 quiz avant de pouvoir générer un quiz adaptatif.",
    E.INSUFFICIENT_QUESTIONS: (
        "Il n'y a pas assez de questions disponibles dans vos catégories faibles pour générer un quiz adaptatif."
    ),
    E.PROFILE_INCOMPLETE: "Votre profil est incomplet. Veuillez compléter vos informations avant de continuer.",
    E.LEVEL_NOT_SET: "Votre niveau d'études n'est pas défini. Veuillez le configurer dans votre profil.",
    E.DAILY_LIMIT_EXCEEDED: "Vous avez atteint la limite quotidienne de 5 quiz adaptatifs. Revenez demain.",
    E.COOLDOWN_ACTIVE: "Vous devez attendre 30 minutes entre chaque génération de quiz adaptatif.",
    E.SESSION_NOT_FOUND: "Session de quiz non trouvée ou expirée.",
    E.SESSION_EXPIRED: "Cette session de quiz a expiré. Veuillez générer un nouveau quiz.",
    E.SESSION_ALREADY_COMPLETED: "Cette session de quiz a déjà été complétée.",
    E.INVALID_SESSION_OWNER: "Vous n'êtes pas autorisé à accéder à cette session de quiz.",
    E.TECHNICAL_ERROR: "Une erreur technique s'est produite. Veuillez réessayer plus tard.",
    E.DATABASE_ERROR: "Erreur de base de données. Veuillez réessayer plus tard.",
    E.VALIDATION_ERROR: "Les données fournies ne sont pas valides.",
    E.AUTHENTICATION_REQUIRED: "Vous devez être connecté pour accéder à cette fonctionnalité.",
    E.UNAUTHORIZED_ACCESS: "Vous n'êtes pas autorisé à effectuer cette action.",
    E.CATEGORY_NOT_FOUND: "Catégorie non trouvée.",
    E.INVALID_CATEGORY_CONFIGURATION: "Configuration de catégorie invalide.",
}

DETAILED_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    E.INSUFFICIENT_DATA: {
        "message": "Données insuffisantes pour générer un quiz adaptatif",
        "suggestion": (
            "Complétez au moins 3 quiz réguliers pour que nous puissions analyser vos performances "
            "et créer un quiz personnalisé."
        ),
        "actionUrl": "/student/quizzes",
    },
    E.INSUFFICIENT_QUESTIONS: {
        "message": "Questions insuffisantes dans vos catégories faibles",
        "suggestion": "Essayez de compléter plus de quiz dans différentes catégories pour élargir votre base de données.",
        "actionUrl": "/student/quizzes",
    },
    E.PROFILE_INCOMPLETE: {
        "message": "Profil utilisateur incomplet",
        "suggestion": "Complétez votre profil avec vos informations d'études pour une meilleure personnalisation.",
        "actionUrl": "/profile",
    },
    E.LEVEL_NOT_SET: {
        "message": "Niveau d'études non défini",
        "suggestion": "Définissez votre niveau d'études (PASS ou LAS) dans votre profil.",
        "actionUrl": "/profile",
    },
    E.DAILY_LIMIT_EXCEEDED: {
        "message": "Limite quotidienne atteinte",
        "suggestion": "Vous pouvez générer jusqu'à 5 quiz adaptatifs par jour. Revenez demain pour continuer.",
    },
    E.COOLDOWN_ACTIVE: {
        "message": "Période d'attente active",
        "suggestion": "Attendez 30 minutes entre chaque génération de quiz adaptatif pour de meilleurs résultats.",
    },
    E.SESSION_NOT_FOUND: {
        "message": "Session introuvable",
        "suggestion": "Cette session n'existe pas ou a été supprimée. Générez un nouveau quiz.",
        "actionUrl": "/student/adaptive-quiz",
    },
    E.SESSION_EXPIRED: {
        "message": "Session expirée",
        "suggestion": "Les sessions de quiz expirent après 24 heures. Générez un nouveau quiz.",
        "actionUrl": "/student/adaptive-quiz",
    },
    E.SESSION_ALREADY_COMPLETED: {
        "message": "Session déjà complétée",
        "suggestion": "Cette session a déjà été terminée. Consultez vos résultats ou générez un nouveau quiz.",
        "actionUrl": "/student/results",
    },
    E.INVALID_SESSION_OWNER: {
        "message": "Accès non autorisé",
        "suggestion": "Vous ne pouvez accéder qu'à vos propres sessions de quiz.",
    },
    E.TECHNICAL_ERROR: {
        "message": "Erreur technique",
        "suggestion": "Une erreur inattendue s'est produite. Veuillez réessayer dans quelques minutes.",
    },
    E.DATABASE_ERROR: {
        "message": "Erreur de base de données",
        "suggestion": "Problème temporaire avec la base de données. Veuillez réessayer plus tard.",
    },
    E.VALIDATION_ERROR: {
        "message": "Données invalides",
        "suggestion": "Vérifiez que toutes les informations fournies sont correctes et complètes.",
    },
    E.AUTHENTICATION_REQUIRED: {
        "message": "Authentification requise",
        "suggestion": "Connectez-vous pour accéder aux quiz adaptatifs.",
        "actionUrl": "/login",
    },
    E.UNAUTHORIZED_ACCESS: {
        "message": "Accès non autorisé",
        "suggestion": "Vous n'avez pas les permissions nécessaires pour cette action.",
    },
    E.CATEGORY_NOT_FOUND: {
        "message": "Catégorie introuvable",
        "suggestion": "La catégorie demandée n'existe pas ou a été supprimée.",
    },
    E.INVALID_CATEGORY_CONFIGURATION: {
        "message": "Configuration de catégorie invalide",
        "suggestion": "La configuration de cette catégorie est incorrecte. Contactez l'administrateur.",
    },
}

HTTP_STATUS_BY_ERROR: Dict[str, int] = {
    E.AUTHENTICATION_REQUIRED: 401,
    E.UNAUTHORIZED_ACCESS: 403,
    E.INVALID_SESSION_OWNER: 403,
    E.SESSION_NOT_FOUND: 404,
    E.CATEGORY_NOT_FOUND: 404,
    E.INSUFFICIENT_DATA: 400,
    E.LEVEL_NOT_SET: 400,
    E.INSUFFICIENT_QUESTIONS: 400,
    E.PROFILE_INCOMPLETE: 400,
    E.VALIDATION_ERROR: 400,
    E.SESSION_ALREADY_COMPLETED: 400,
    E.SESSION_EXPIRED: 400,
    E.DAILY_LIMIT_EXCEEDED: 429,
    E.COOLDOWN_ACTIVE: 429,
}

# Substring rules, first match wins.
_CLASSIFICATION_RULES = (
    (("insufficient_data",), E.INSUFFICIENT_DATA),
    (("insufficient_questions",), E.INSUFFICIENT_QUESTIONS),
    (("level_not_set",), E.LEVEL_NOT_SET),
    (("daily_limit_exceeded",), E.DAILY_LIMIT_EXCEEDED),
    (("cooldown_active",), E.COOLDOWN_ACTIVE),
    (("session_not_found",), E.SESSION_NOT_FOUND),
    (("session_expired",), E.SESSION_EXPIRED),
    (("validation",), E.VALIDATION_ERROR),
    (("database", "connection"), E.DATABASE_ERROR),
    (("unauthorized", "permission"), E.UNAUTHORIZED_ACCESS),
)

_SEVERITY_BY_ERROR: Dict[str, str] = {
    E.DATABASE_ERROR: AuditSeverity.HIGH.value,
    E.TECHNICAL_ERROR: AuditSeverity.HIGH.value,
    E.AUTHENTICATION_REQUIRED: AuditSeverity.MEDIUM.value,
    E.UNAUTHORIZED_ACCESS: AuditSeverity.MEDIUM.value,
    E.VALIDATION_ERROR: AuditSeverity.MEDIUM.value,
    E.INSUFFICIENT_DATA: AuditSeverity.LOW.value,
    E.DAILY_LIMIT_EXCEEDED: AuditSeverity.LOW.value,
    E.COOLDOWN_ACTIVE: AuditSeverity.LOW.value,
    E.LEVEL_NOT_SET: AuditSeverity.LOW.value,
    E.PROFILE_INCOMPLETE: AuditSeverity.LOW.value,
}


class AdaptiveQuizException(Exception):
    """Typed error of the adaptive quiz feature.

    ``str(exc)`` is the error code so that the substring classifiers keep
    recognising it after it has been wrapped or re-raised.
    """

    def __init__(self, error_type: Union[AdaptiveQuizErrorType, str], details: Optional[Dict[str, Any]] = None):
        self.error_type = normalize_error_type(error_type)
        self.details = details
        super().__init__(self.error_type)


def normalize_error_type(error_type: Union[AdaptiveQuizErrorType, str]) -> str:
    """Return the code as a plain string, unknown codes becoming ``technical_error``."""
    value = error_type.value if isinstance(error_type, AdaptiveQuizErrorType) else str(error_type)
    if value in ERROR_MESSAGES:
        return value
    return E.TECHNICAL_ERROR.value


def classify_error(exc: BaseException) -> str:
    """Map an arbitrary exception to an error code by its message."""
    if isinstance(exc, AdaptiveQuizException):
        return exc.error_type
    message = str(exc).lower()
    for needles, error_type in _CLASSIFICATION_RULES:
        if any(needle in message for needle in needles):
            return error_type.value
    return E.TECHNICAL_ERROR.value


def get_http_status_for_error(error_type: str) -> int:
    return HTTP_STATUS_BY_ERROR.get(error_type, 500)


def validate_required_params(params: Mapping[str, Any], required: Iterable[str]) -> None:
    """Raise ``validation_error`` listing the missing or empty parameters."""
    missing = [name for name in required if params.get(name) in (None, "")]
    if missing:
        raise AdaptiveQuizException(
            E.VALIDATION_ERROR,
            {"message": f"Paramètres manquants: {', '.join(missing)}", "missingFields": missing},
        )


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ErrorHandlingService:
    """Builds, maps and records adaptive quiz errors."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def get_error_message(error_type: str) -> str:
        return ERROR_MESSAGES[normalize_error_type(error_type)]

    @staticmethod
    def get_detailed_error_message(error_type: str) -> Dict[str, str]:
        return DETAILED_ERROR_MESSAGES[normalize_error_type(error_type)]

    def create_adaptive_quiz_error(
        self,
        error_type: str,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        context: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Structured error ``{type, message, details, timestamp, userId, sessionId, context}``."""
        normalized = normalize_error_type(error_type)
        return {
            "type": normalized,
            "message": self.get_error_message(normalized),
            "details": details,
            "timestamp": _iso_now(),
            "userId": user_id,
            "sessionId": session_id,
            "context": context,
        }

    @classmethod
    def map_backend_error_to_frontend(cls, error: Union[str, BaseException, Dict[str, Any]]) -> Dict[str, Any]:
        """Convert a code, an exception or a structured error to the client error format."""
        details: Optional[Dict[str, Any]] = None
        if isinstance(error, str):
            error_type = normalize_error_type(error)
        elif isinstance(error, AdaptiveQuizException):
            error_type = error.error_type
            details = error.details
        elif isinstance(error, BaseException):
            error_type = classify_error(error)
            details = {"originalMessage": str(error)}
        else:
            error_type = normalize_error_type(error.get("type", E.TECHNICAL_ERROR.value))
            details = error.get("details")

        detailed = cls.get_detailed_error_message(error_type)
        return {
            "success": False,
            "error": {
                "type": error_type,
                "message": detailed["message"],
                "details": details,
                "suggestion": detailed["suggestion"],
                "actionUrl": detailed.get("actionUrl"),
                "timestamp": _iso_now(),
            },
        }

    @staticmethod
    def get_error_severity(error_type: str) -> str:
        return _SEVERITY_BY_ERROR.get(error_type, AuditSeverity.MEDIUM.value)

    async def log_error(self, error: Dict[str, Any], request_info: Optional[Dict[str, Any]] = None) -> None:
        """Persist a structured error as an ``adaptive_quiz_error`` audit entry.

        Failures are logged and swallowed so that error reporting never masks
        the error being reported.
        """
        try:
            entry = AuditLog(
                user_id=error.get("userId") or None,
                action=AuditAction.ADAPTIVE_QUIZ_ERROR.value,
                details={
                    "errorType": error.get("type"),
                    "errorMessage": error.get("message"),
                    "errorDetails": error.get("details"),
                    "sessionId": error.get("sessionId"),
                    "context": error.get("context"),
                    "request": request_info,
                    "timestamp": error.get("timestamp"),
                },
                severity=self.get_error_severity(error.get("type", "")),
            )
            self.session.add(entry)
            await self.session.commit()
        except Exception as e:
            logger.error(f"Failed to log adaptive quiz error: {e}", exc_info=True)
            await self.session.rollback()
