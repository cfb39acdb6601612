"""
Quiz, question and submission entity models.

Questions are multiple choice: ``options`` is a list of
``{"id", "optionText", "isCorrect"}`` dictionaries and an answer is the
``id`` of the chosen option. Submissions keep the graded answers so that
performance analytics can be recomputed at any time.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import JSON, Field

from ..base import DocumentBase, new_id, utc_now
from .courses import StudentLevel


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Quiz(DocumentBase, table=True):
    """Ordered list of questions.

    Table: mp_quizzes
    """

    __tablename__ = "mp_quizzes"
    __audit_collection__ = "quizzes"

    title: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    course_id: Optional[str] = Field(default=None, foreign_key="mp_courses.id", max_length=64, index=True)
    category_id: Optional[str] = Field(default=None, foreign_key="mp_categories.id", max_length=64)
    question_ids: List[str] = Field(default_factory=list, sa_type=JSON)
    quiz_type: str = Field(default="standard", max_length=32)
    published: bool = Field(default=False)
    generated_by_ai: bool = Field(default=False)

    def __repr__(self) -> str:
        return f"Quiz(id={self.id}, title={self.title}, questions={len(self.question_ids or [])})"


class Question(DocumentBase, table=True):
    """Multiple-choice question.

    Table: mp_questions
    """

    __tablename__ = "mp_questions"
    __audit_collection__ = "questions"

    question_text: str = Field()
    question_type: str = Field(default="multipleChoice", max_length=32)
    options: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    explanation: Optional[str] = Field(default=None)
    course_id: Optional[str] = Field(default=None, foreign_key="mp_courses.id", max_length=64)
    category_id: Optional[str] = Field(default=None, foreign_key="mp_categories.id", max_length=64, index=True)
    difficulty: str = Field(default=Difficulty.MEDIUM.value, max_length=16, index=True)
    student_level: str = Field(default=StudentLevel.BOTH.value, max_length=16, index=True)
    tags: List[str] = Field(default_factory=list, sa_type=JSON)
    # averageTimeSeconds, successRate, timesUsed
    adaptive_metadata: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    generated_by_ai: bool = Field(default=False)
    validated_by_expert: bool = Field(default=False)

    def correct_option_ids(self) -> List[str]:
        """Ids of the options flagged correct.

        Options stored without an explicit id are addressed by their index.
        """
        return [
            str(option.get("id", index))
            for index, option in enumerate(self.options or [])
            if option.get("isCorrect")
        ]

    def is_correct(self, answer: Any) -> bool:
        """Grade an answer given as one option id or a list of option ids."""
        correct = sorted(self.correct_option_ids())
        if not correct:
            return False
        if isinstance(answer, (list, tuple)):
            return sorted(str(a) for a in answer) == correct
        return len(correct) == 1 and str(answer) == correct[0]

    def __repr__(self) -> str:
        return f"Question(id={self.id}, category_id={self.category_id}, difficulty={self.difficulty})"


def build_option(option_text: str, is_correct: bool) -> Dict[str, Any]:
    return {"id": new_id()[:12], "optionText": option_text, "isCorrect": is_correct}


class QuizSubmission(DocumentBase, table=True):
    """Graded attempt at a quiz.

    ``answers`` holds ``{"question", "answer", "isCorrect"}`` items and
    ``final_score`` is a percentage (0-100).

    Table: mp_quiz_submissions
    """

    __tablename__ = "mp_quiz_submissions"

    quiz_id: str = Field(foreign_key="mp_quizzes.id", max_length=64, index=True)
    student_id: str = Field(foreign_key="mp_users.id", max_length=64, index=True)
    submission_date: datetime = Field(default_factory=utc_now, index=True)
    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    final_score: Optional[float] = Field(default=None)

    def __repr__(self) -> str:
        return f"QuizSubmission(id={self.id}, quiz_id={self.quiz_id}, final_score={self.final_score})"
