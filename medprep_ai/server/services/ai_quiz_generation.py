"""
AI quiz generation.

A ``pydantic_ai.Agent`` produces a ``GeneratedQuiz`` (structured output,
validated by pydantic and sent back to the model on violations). Provider
failures are retried with exponential backoff, a content validation failure
retries with a simplified configuration. The accepted quiz is stored with
its questions, all flagged ``generated_by_ai``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic_ai import Agent, ModelRetry, RunContext
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.models import Model
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database.entities.courses import Course
from medprep_ai.core.database.entities.quizzes import Question, Quiz, build_option
from medprep_ai.core.database.repositories import CategoryRepository, QuestionRepository, QuizRepository
from medprep_ai.core.monitoring import log_ai_generation
from medprep_ai.server.core.config import settings

from .ai_quiz_errors import (
    AIQuizError,
    AIQuizErrorManager,
    AIQuizErrorType,
    AIQuizGenerationError,
    analyze_api_error,
    calculate_retry_delay,
)
from .ai_quiz_validation import AIQuizValidationService, GeneratedQuiz

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Tu es un expert en pédagogie médicale et en création de questions d'examen pour les étudiants "
    "de PASS et LAS. Tu rédiges des QCM cliniquement pertinents, avec 4 options dont une seule est "
    "correcte, des distracteurs plausibles et une explication pédagogique complète."
)

LEVEL_LABELS = {"PASS": "PASS (1ère année)", "LAS": "LAS (2ème année)", "both": "PASS et LAS"}


def build_prompt(config: Dict[str, Any], category_title: Optional[str] = None, course_title: Optional[str] = None) -> str:
    """User prompt of a generation run."""
    lines = [
        f"Génère un quiz de {config['questionCount']} questions sur le sujet suivant : {config['subject']}",
        "",
        "CONTEXTE:",
        f"- Niveau d'études: {LEVEL_LABELS.get(config.get('studentLevel'), config.get('studentLevel'))}",
        f"- Domaine médical: {config.get('medicalDomain') or 'médecine générale'}",
        f"- Difficulté: {config.get('difficulty') or 'medium'}",
    ]
    if category_title:
        lines.append(f"- Catégorie: {category_title}")
    if course_title:
        lines.append(f"- Cours associé: {course_title}")
    lines += [
        "",
        "RÈGLES DE CRÉATION:",
        "- Question claire, précise et pédagogique",
        "- 4 options de réponse, 1 seule bonne réponse",
        "- Vocabulaire médical approprié mais accessible",
        "- Évite les pièges trop évidents",
    ]
    if config.get("includeExplanations", True):
        lines.append("- Explique pourquoi la bonne réponse est correcte et pourquoi les autres sont incorrectes")
    if config.get("customInstructions"):
        lines += ["", f"INSTRUCTIONS SUPPLÉMENTAIRES: {config['customInstructions']}"]
    return "\n".join(lines)


def build_agent(model: Union[Model, str]) -> Agent[int, GeneratedQuiz]:
    """Agent returning a ``GeneratedQuiz`` with exactly ``deps`` questions."""
    agent: Agent[int, GeneratedQuiz] = Agent(
        model,
        deps_type=int,
        output_type=GeneratedQuiz,
        system_prompt=SYSTEM_PROMPT,
        retries=2,
    )

    @agent.output_validator
    def _question_count(ctx: RunContext[int], output: GeneratedQuiz) -> GeneratedQuiz:
        if len(output.questions) != ctx.deps:
            raise ModelRetry(f"Le quiz doit contenir exactement {ctx.deps} questions, pas {len(output.questions)}.")
        return output

    return agent


def _model_name(model: Union[Model, str]) -> str:
    return model if isinstance(model, str) else getattr(model, "model_name", type(model).__name__)


class AIQuizGenerationService:
    def __init__(
        self,
        session: AsyncSession,
        model: Optional[Union[Model, str]] = None,
        max_retries: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.model = model or settings.ai.model
        self.max_retries = settings.ai.max_retries if max_retries is None else max_retries
        self.error_manager = AIQuizErrorManager(session)
        self._sleep = sleep

    async def generate_quiz(self, config: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """
        Generate and store a quiz.

        Args:
            config: camelCase generation configuration
            user_id: Requesting admin or teacher

        Returns:
            ``{success, quizId, title, questionIds, questionCount, attempts,
            warnings}``

        Raises:
            AIQuizGenerationError: If the configuration is invalid, the model
                keeps failing or the quiz cannot be stored
        """
        validation = await AIQuizValidationService(self.session).validate_generation_config(
            {**config, "userId": user_id}
        )
        if not validation["isValid"]:
            raise AIQuizGenerationError(
                AIQuizError.of(
                    AIQuizErrorType.INVALID_GENERATION_CONFIG,
                    "Configuration de génération invalide",
                    details={"errors": validation["errors"]},
                    user_id=user_id,
                ),
                operation="config",
            )
        current = validation["sanitizedConfig"]

        category = await CategoryRepository(self.session).get_by_id(current["categoryId"])
        course = await self.session.get(Course, current["courseId"]) if current.get("courseId") else None
        model_name = _model_name(self.model)
        try:
            agent = build_agent(self.model)
        except Exception as e:
            logger.error(f"AI model {model_name} cannot be used: {e}")
            raise AIQuizGenerationError(
                AIQuizError.of(AIQuizErrorType.AI_API_UNAVAILABLE, str(e), user_id=user_id)
            ) from e

        attempt = 0
        while True:
            try:
                result = await agent.run(
                    build_prompt(current, category.title if category else None, course.title if course else None),
                    deps=current["questionCount"],
                )
                generated = result.output
                log_ai_generation(model_name, len(generated.questions), attempt + 1, True)
                break
            except Exception as e:
                ai_error = self._classify_generation_error(e, user_id)
                log_ai_generation(model_name, current["questionCount"], attempt + 1, False)
                logger.warning(f"AI quiz generation attempt {attempt + 1} failed ({ai_error.type.value}): {e}")

                recovery = self.error_manager.attempt_auto_recovery(ai_error.type, attempt, current)
                if not recovery["shouldRetry"] or attempt >= self.max_retries:
                    raise AIQuizGenerationError(ai_error, attempts=attempt + 1) from e
                adjusted = (recovery.get("result") or {}).get("adjustedConfig")
                if adjusted:
                    logger.info(
                        f"Retrying with {adjusted['questionCount']} questions at difficulty {adjusted['difficulty']}"
                    )
                    current = adjusted
                await self._sleep((recovery.get("retryDelay") or calculate_retry_delay(attempt)) / 1000)
                attempt += 1

        quiz = await self._store(generated, current, user_id, attempt + 1)
        return {
            "success": True,
            "quizId": quiz.id,
            "title": quiz.title,
            "questionIds": list(quiz.question_ids),
            "questionCount": len(quiz.question_ids),
            "attempts": attempt + 1,
            "warnings": validation["warnings"],
        }

    @staticmethod
    def _classify_generation_error(error: Exception, user_id: str) -> AIQuizError:
        if isinstance(error, UnexpectedModelBehavior):
            ai_error = AIQuizError.of(
                AIQuizErrorType.VALIDATION_FAILED, str(error), details={"errorClass": type(error).__name__}
            )
        else:
            ai_error = analyze_api_error(error)
        ai_error.user_id = user_id
        return ai_error

    async def _store(self, generated: GeneratedQuiz, config: Dict[str, Any], user_id: str, attempts: int) -> Quiz:
        questions = QuestionRepository(self.session)
        failed_type = AIQuizErrorType.QUESTION_CREATION_FAILED
        try:
            question_ids = []
            for item in generated.questions:
                question = await questions.create(
                    Question(
                        question_text=item.question_text,
                        options=[build_option(option.text, option.is_correct) for option in item.options],
                        explanation=item.explanation if config.get("includeExplanations", True) else None,
                        category_id=config["categoryId"],
                        course_id=config.get("courseId"),
                        difficulty=item.difficulty or config.get("difficulty") or "medium",
                        student_level=config["studentLevel"],
                        tags=list(item.tags),
                        generated_by_ai=True,
                    )
                )
                question_ids.append(question.id)

            failed_type = AIQuizErrorType.QUIZ_CREATION_FAILED
            quiz = await QuizRepository(self.session).create(
                Quiz(
                    title=generated.quiz.title,
                    description=generated.quiz.description,
                    course_id=config.get("courseId"),
                    category_id=config["categoryId"],
                    question_ids=question_ids,
                    quiz_type="ai_generated",
                    published=bool(config.get("published", False)),
                    generated_by_ai=True,
                )
            )
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Could not store generated quiz: {e}", exc_info=True)
            error = AIQuizError.of(failed_type, str(e), details={"errorClass": type(e).__name__}, user_id=user_id)
            raise AIQuizGenerationError(error, operation="creation", attempts=attempts) from e

        logger.info(f"AI quiz {quiz.id} stored with {len(question_ids)} questions for {user_id}")
        return quiz
