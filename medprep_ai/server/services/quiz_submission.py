"""
Quiz submission grading.

A submission is graded against the options flagged correct on each quiz
question, stored as a QuizSubmission and fed to the performance analytics.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import utc_now
from medprep_ai.core.database.entities.quizzes import QuizSubmission
from medprep_ai.core.database.repositories import QuestionRepository, QuizRepository, QuizSubmissionRepository
from medprep_ai.core.utils import round_half_up

from .performance_analytics import PerformanceAnalyticsService

logger = logging.getLogger(__name__)

QUIZ_NOT_FOUND_MESSAGE = "Quiz introuvable ou ne contenant aucune question."
SUBMISSION_SUCCESS_MESSAGE = "Quiz soumis avec succès !"


class QuizNotFoundError(Exception):
    def __init__(self, quiz_id: str):
        self.quiz_id = quiz_id
        super().__init__(QUIZ_NOT_FOUND_MESSAGE)


class QuizSubmissionService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.quizzes = QuizRepository(session)
        self.questions = QuestionRepository(session)
        self.submissions = QuizSubmissionRepository(session)

    async def submit_quiz(
        self, quiz_id: str, student_id: str, answers: Sequence[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Grade and store a student's answers to a quiz.

        Args:
            quiz_id: Quiz being answered
            student_id: Submitting student
            answers: ``{"question": id, "answer": option id}`` items

        Returns:
            ``{message, submissionId, score}`` with ``score`` in percent

        Raises:
            QuizNotFoundError: If the quiz does not exist or has no question
        """
        quiz = await self.quizzes.get_by_id(quiz_id)
        if quiz is None or not quiz.question_ids:
            raise QuizNotFoundError(quiz_id)

        questions = {q.id: q for q in await self.questions.get_many(quiz.question_ids)}

        score = 0
        graded: List[Dict[str, Any]] = []
        for item in answers:
            question = questions.get(str(item.get("question")))
            if question is None or not question.options:
                continue
            correct = question.correct_option_ids()
            is_correct = bool(correct) and correct[0] == str(item.get("answer"))
            if is_correct:
                score += 1
            graded.append({"question": question.id, "answer": item.get("answer"), "isCorrect": is_correct})

        final_score = round_half_up(score / len(quiz.question_ids) * 100)
        submission = await self.submissions.create(
            QuizSubmission(
                quiz_id=quiz.id,
                student_id=student_id,
                submission_date=utc_now(),
                answers=graded,
                final_score=final_score,
            )
        )
        logger.info(f"Quiz {quiz.id} submitted by {student_id}: {score}/{len(quiz.question_ids)}")

        # Snapshot is stale once a new submission exists.
        await PerformanceAnalyticsService(self.session).invalidate_user_cache(student_id)

        return {"message": SUBMISSION_SUCCESS_MESSAGE, "submissionId": submission.id, "score": final_score}
