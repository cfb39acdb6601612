"""
Validation of AI quiz generation requests and of generated content.

``AIQuizValidationService`` checks a generation configuration before any
model call. ``GeneratedQuiz`` is the structured output expected from the
model; its constraints are enforced by pydantic so that a non-conforming
answer is sent back to the model for correction.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database.entities.courses import Course
from medprep_ai.core.database.entities.users import UserRole
from medprep_ai.core.database.repositories import CategoryRepository, QuestionRepository, UserRepository

logger = logging.getLogger(__name__)

VALID_LEVELS = ("PASS", "LAS", "both")
VALID_DIFFICULTIES = ("easy", "medium", "hard")
GENERATOR_ROLES = (UserRole.ADMIN.value, UserRole.SUPERADMIN.value, UserRole.TEACHER.value)

MEDICAL_TERMS = (
    "anatomie", "physiologie", "pathologie", "médecine", "santé",
    "maladie", "diagnostic", "traitement", "symptôme", "syndrome",
    "cardiologie", "neurologie", "pneumologie", "gastroentérologie",
)
MEDICAL_DOMAINS = (
    "anatomie", "physiologie", "pathologie", "pharmacologie",
    "cardiologie", "neurologie", "pneumologie", "gastroentérologie",
    "endocrinologie", "immunologie", "biochimie", "histologie",
    "embryologie", "médecine générale",
)
SENSITIVE_TERMS = ("violence", "drogue", "suicide", "mort", "tuer", "blesser")
CONTRADICTORY_TERMS = ("ignore", "oublie", "ne pas", "contraire", "opposé")

UNSAFE_SUBJECT = re.compile(r"<script|javascript:|data:|vbscript:", re.IGNORECASE)
UNSAFE_INSTRUCTIONS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"ignore.*previous.*instructions", re.IGNORECASE),
    re.compile(r"system.*prompt", re.IGNORECASE),
)

REQUIRED_FIELDS = (
    ("subject", "Le sujet est obligatoire"),
    ("categoryId", "Une catégorie doit être sélectionnée"),
    ("studentLevel", "Le niveau étudiant est obligatoire"),
    ("questionCount", "Le nombre de questions est obligatoire"),
    ("userId", "L'identifiant utilisateur est obligatoire"),
)


# Generated content


class GeneratedOption(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str = Field(min_length=5, max_length=200)
    is_correct: bool


class GeneratedQuestion(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    question_text: str = Field(min_length=20, max_length=500)
    options: List[GeneratedOption] = Field(min_length=4, max_length=4)
    explanation: str = Field(min_length=50, max_length=1000)
    difficulty: Optional[Literal["easy", "medium", "hard"]] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("options")
    @classmethod
    def _exactly_one_correct(cls, options: List[GeneratedOption]) -> List[GeneratedOption]:
        correct = sum(1 for option in options if option.is_correct)
        if correct != 1:
            raise ValueError(f"exactly one option must be correct, got {correct}")
        return options

    @field_validator("tags")
    @classmethod
    def _tag_length(cls, tags: List[str]) -> List[str]:
        for tag in tags:
            if not 2 <= len(tag) <= 50:
                raise ValueError(f"tag {tag!r} must be 2 to 50 characters long")
        return tags


class GeneratedQuizMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(min_length=10, max_length=100)
    description: str = Field(min_length=20, max_length=300)
    estimated_duration: int = Field(ge=5, le=60)


class GeneratedQuiz(BaseModel):
    """Quiz content as produced by the model."""

    quiz: GeneratedQuizMeta
    questions: List[GeneratedQuestion] = Field(min_length=1, max_length=20)


# Configuration validation


def _error(field: str, message: str, code: str, severity: str) -> Dict[str, str]:
    return {"field": field, "message": message, "code": code, "severity": severity}


def _warning(field: str, message: str, suggestion: str) -> Dict[str, str]:
    return {"field": field, "message": message, "suggestion": suggestion}


def _missing(value: Any) -> bool:
    return value is None or value == ""


class AIQuizValidationService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def validate_generation_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate an AI quiz generation configuration.

        Args:
            config: camelCase configuration (``subject``, ``categoryId``,
                ``studentLevel``, ``questionCount``, ``difficulty``,
                ``customInstructions``, ``medicalDomain``, ``userId``...)

        Returns:
            ``{isValid, errors, warnings, sanitizedConfig}``; the
            configuration is valid when no error is critical or major
        """
        errors: List[Dict[str, str]] = []
        warnings: List[Dict[str, str]] = []

        for field, message in REQUIRED_FIELDS:
            if _missing(config.get(field)):
                errors.append(_error(field, message, "REQUIRED_FIELD_MISSING", "critical"))

        self._validate_subject(config.get("subject"), errors, warnings)
        await self._validate_category(config.get("categoryId"), errors, warnings)
        await self._validate_course(config.get("courseId"), errors)
        self._validate_student_level(config.get("studentLevel"), errors, warnings)
        self._validate_question_count(config.get("questionCount"), errors, warnings)
        self._validate_difficulty(config.get("difficulty"), errors)
        self._validate_custom_instructions(config.get("customInstructions"), errors, warnings)
        self._validate_medical_domain(config.get("medicalDomain"), warnings)
        await self._validate_user(config.get("userId"), errors)
        errors.extend(self.validate_parameter_consistency(config))

        sanitized = self.sanitize_config(config, warnings)
        is_valid = not any(e["severity"] in ("critical", "major") for e in errors)
        if not is_valid:
            logger.info(f"AI quiz configuration rejected: {[e['code'] for e in errors]}")
        return {"isValid": is_valid, "errors": errors, "warnings": warnings, "sanitizedConfig": sanitized}

    @staticmethod
    def _validate_subject(subject: Optional[str], errors: List, warnings: List) -> None:
        if not subject:
            return
        if len(subject.strip()) < 10:
            errors.append(_error("subject", "Le sujet doit contenir au moins 10 caractères", "SUBJECT_TOO_SHORT", "major"))
        if len(subject) > 200:
            errors.append(
                _error("subject", "Le sujet ne peut pas dépasser 200 caractères", "SUBJECT_TOO_LONG", "major")
            )

        lower = subject.lower()
        if not any(term in lower for term in MEDICAL_TERMS):
            warnings.append(
                _warning(
                    "subject",
                    "Le sujet ne semble pas contenir de termes médicaux spécifiques",
                    "Ajoutez des termes médicaux pour améliorer la pertinence des questions générées",
                )
            )
        if UNSAFE_SUBJECT.search(subject):
            errors.append(
                _error(
                    "subject",
                    "Le sujet contient des caractères potentiellement dangereux",
                    "SUBJECT_UNSAFE_CONTENT",
                    "critical",
                )
            )
        if any(term in lower for term in SENSITIVE_TERMS):
            warnings.append(
                _warning(
                    "subject",
                    "Le sujet pourrait contenir du contenu sensible",
                    "Reformulez le sujet de manière plus neutre et pédagogique",
                )
            )

    async def _validate_category(self, category_id: Optional[str], errors: List, warnings: List) -> None:
        if not category_id:
            return
        try:
            category = await CategoryRepository(self.session).get_by_id(category_id)
            if category is None:
                errors.append(
                    _error("categoryId", "La catégorie sélectionnée n'existe pas", "CATEGORY_NOT_FOUND", "critical")
                )
                return
            if (category.adaptive_settings or {}).get("isActive") is False:
                warnings.append(
                    _warning(
                        "categoryId",
                        "La catégorie sélectionnée est inactive",
                        "Choisissez une catégorie active pour une meilleure visibilité",
                    )
                )
            if await QuestionRepository(self.session).count_available(None, category_id) == 0:
                warnings.append(
                    _warning(
                        "categoryId",
                        "Cette catégorie ne contient pas encore de questions",
                        "Les premières questions générées aideront à établir le style de cette catégorie",
                    )
                )
        except Exception as e:
            logger.error(f"Category validation failed for {category_id}: {e}")
            errors.append(
                _error(
                    "categoryId", "Erreur lors de la validation de la catégorie", "CATEGORY_VALIDATION_ERROR", "major"
                )
            )

    async def _validate_course(self, course_id: Optional[str], errors: List) -> None:
        if course_id and await self.session.get(Course, course_id) is None:
            errors.append(_error("courseId", "Le cours sélectionné n'existe pas", "COURSE_NOT_FOUND", "major"))

    @staticmethod
    def _validate_student_level(level: Optional[str], errors: List, warnings: List) -> None:
        if not level:
            return
        if level not in VALID_LEVELS:
            errors.append(
                _error(
                    "studentLevel", "Le niveau étudiant doit être PASS, LAS ou both", "INVALID_STUDENT_LEVEL", "critical"
                )
            )
        if level == "both":
            warnings.append(
                _warning(
                    "studentLevel",
                    'Le niveau "both" peut générer des questions de difficulté variable',
                    "Spécifiez PASS ou LAS pour des questions plus ciblées",
                )
            )

    @staticmethod
    def _validate_question_count(count: Any, errors: List, warnings: List) -> None:
        if count is None:
            return
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            errors.append(
                _error(
                    "questionCount",
                    "Le nombre de questions doit être un entier positif",
                    "INVALID_QUESTION_COUNT_TYPE",
                    "critical",
                )
            )
            return
        if count < 5:
            errors.append(
                _error("questionCount", "Le nombre minimum de questions est 5", "QUESTION_COUNT_TOO_LOW", "major")
            )
        if count > 20:
            errors.append(
                _error("questionCount", "Le nombre maximum de questions est 20", "QUESTION_COUNT_TOO_HIGH", "major")
            )
        if count > 15:
            warnings.append(
                _warning(
                    "questionCount",
                    "Un grand nombre de questions peut augmenter le temps de génération",
                    "Considérez diviser en plusieurs quiz plus courts pour une meilleure expérience",
                )
            )
        if count < 8:
            warnings.append(
                _warning(
                    "questionCount",
                    "Un petit nombre de questions peut limiter l'évaluation",
                    "Augmentez à 8-12 questions pour une évaluation plus complète",
                )
            )

    @staticmethod
    def _validate_difficulty(difficulty: Optional[str], errors: List) -> None:
        if difficulty and difficulty not in VALID_DIFFICULTIES:
            errors.append(
                _error("difficulty", "La difficulté doit être easy, medium ou hard", "INVALID_DIFFICULTY", "major")
            )

    @staticmethod
    def _validate_custom_instructions(instructions: Optional[str], errors: List, warnings: List) -> None:
        if not instructions:
            return
        if len(instructions) > 500:
            errors.append(
                _error(
                    "customInstructions",
                    "Les instructions personnalisées ne peuvent pas dépasser 500 caractères",
                    "CUSTOM_INSTRUCTIONS_TOO_LONG",
                    "major",
                )
            )
        if any(pattern.search(instructions) for pattern in UNSAFE_INSTRUCTIONS):
            errors.append(
                _error(
                    "customInstructions",
                    "Les instructions contiennent du contenu potentiellement dangereux",
                    "CUSTOM_INSTRUCTIONS_UNSAFE",
                    "critical",
                )
            )
        if any(term in instructions.lower() for term in CONTRADICTORY_TERMS):
            warnings.append(
                _warning(
                    "customInstructions",
                    "Les instructions semblent contenir des directives contradictoires",
                    "Formulez des instructions positives et claires",
                )
            )

    @staticmethod
    def _validate_medical_domain(domain: Optional[str], warnings: List) -> None:
        if domain and not any(known in domain.lower() for known in MEDICAL_DOMAINS):
            warnings.append(
                _warning(
                    "medicalDomain",
                    "Le domaine médical spécifié n'est pas reconnu",
                    f"Utilisez un des domaines standards: {', '.join(MEDICAL_DOMAINS[:5])}, etc.",
                )
            )

    async def _validate_user(self, user_id: Optional[str], errors: List) -> None:
        if not user_id:
            return
        user = await UserRepository(self.session).get_by_id(user_id)
        if user is None:
            errors.append(_error("userId", "Utilisateur non trouvé", "USER_NOT_FOUND", "critical"))
        elif user.role not in GENERATOR_ROLES:
            errors.append(
                _error(
                    "userId",
                    "L'utilisateur n'a pas les permissions pour générer des quiz",
                    "INSUFFICIENT_PERMISSIONS",
                    "critical",
                )
            )

    @staticmethod
    def validate_parameter_consistency(config: Dict[str, Any]) -> List[Dict[str, str]]:
        errors = []
        if config.get("difficulty") == "hard" and config.get("studentLevel") == "PASS":
            errors.append(
                _error(
                    "difficulty",
                    'La difficulté "hard" peut être trop élevée pour le niveau PASS',
                    "DIFFICULTY_LEVEL_MISMATCH",
                    "minor",
                )
            )
        count = config.get("questionCount")
        if isinstance(count, int) and count > 15 and config.get("difficulty") == "hard":
            errors.append(
                _error(
                    "questionCount",
                    "Un grand nombre de questions difficiles peut être trop exigeant",
                    "QUANTITY_DIFFICULTY_MISMATCH",
                    "minor",
                )
            )
        return errors

    @staticmethod
    def sanitize_config(config: Dict[str, Any], warnings: List) -> Dict[str, Any]:
        sanitized = dict(config)
        subject = sanitized.get("subject")
        if isinstance(subject, str):
            cleaned = re.sub(r"[<>]", "", re.sub(r"\s+", " ", subject.strip()))
            if cleaned != subject:
                warnings.append(
                    _warning(
                        "subject",
                        "Le sujet a été automatiquement nettoyé",
                        "Vérifiez que le sujet nettoyé correspond à vos attentes",
                    )
                )
            sanitized["subject"] = cleaned

        instructions = sanitized.get("customInstructions")
        if isinstance(instructions, str):
            sanitized["customInstructions"] = re.sub(r"[<>]", "", re.sub(r"\s+", " ", instructions.strip()))

        if isinstance(sanitized.get("medicalDomain"), str):
            sanitized["medicalDomain"] = sanitized["medicalDomain"].lower().strip()

        if sanitized.get("difficulty") is None:
            sanitized["difficulty"] = "medium"
            warnings.append(
                _warning(
                    "difficulty",
                    'Difficulté définie automatiquement à "medium"',
                    "Spécifiez explicitement la difficulté souhaitée",
                )
            )
        if sanitized.get("includeExplanations") is None:
            sanitized["includeExplanations"] = True
            warnings.append(
                _warning(
                    "includeExplanations",
                    "Explications activées par défaut",
                    "Spécifiez explicitement si vous voulez des explications",
                )
            )
        return sanitized
