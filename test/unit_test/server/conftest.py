from __future__ import annotations

from datetime import timedelta
from typing import AsyncGenerator, Optional, Sequence
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import new_id, utc_now
from medprep_ai.core.database.entities.courses import Category
from medprep_ai.core.database.entities.quizzes import Question, Quiz, QuizSubmission, build_option
from medprep_ai.core.database.entities.users import User
from medprep_ai.core.utils import round_half_up


@pytest_asyncio.fixture(name="client")
async def client_fixture(session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with mocked lifespan and overridden dependencies."""
    from medprep_ai.core.database import get_session
    from medprep_ai.server.main import app

    async def get_session_override() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_session] = get_session_override

    # Mock the lifespan to prevent database initialization during tests
    async def mock_lifespan(app):
        yield

    # raise_app_exceptions=False lets the 500 answers of the global handler through
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    with patch("medprep_ai.server.main.lifespan", mock_lifespan):
        async with AsyncClient(transport=transport, base_url="http://localhost") as client:
            yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session: AsyncSession):
    async def _make_user(
        role: str = "student",
        study_year: Optional[str] = "pass",
        student_level: Optional[str] = "PASS",
        email: Optional[str] = None,
    ) -> User:
        user = User(
            email=email or f"{new_id()[:10]}@medprep.test",
            role=role,
            study_year=study_year,
            student_level=student_level,
        )
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_category(session: AsyncSession):
    async def _make_category(title: str = "Anatomie") -> Category:
        category = Category(title=title, adaptive_settings={"isActive": True})
        session.add(category)
        await session.commit()
        return category

    return _make_category


@pytest.fixture
def make_question(session: AsyncSession):
    async def _make_question(
        category: Category,
        difficulty: str = "medium",
        student_level: str = "PASS",
        text: str = "Quelle structure sépare l'oreillette droite du ventricule droit ?",
    ) -> Question:
        question = Question(
            question_text=text,
            options=[
                build_option("Valve tricuspide", True),
                build_option("Valve mitrale", False),
                build_option("Valve aortique", False),
                build_option("Valve pulmonaire", False),
            ],
            category_id=category.id,
            difficulty=difficulty,
            student_level=student_level,
        )
        session.add(question)
        await session.commit()
        return question

    return _make_question


@pytest.fixture
def make_quiz(session: AsyncSession):
    async def _make_quiz(questions: Sequence[Question], title: str = "Quiz cardiologie") -> Quiz:
        quiz = Quiz(title=title, question_ids=[q.id for q in questions], published=True)
        session.add(quiz)
        await session.commit()
        return quiz

    return _make_quiz


@pytest.fixture
def make_submission(session: AsyncSession):
    async def _make_submission(
        user: User,
        quiz: Quiz,
        graded: Sequence[tuple],
        days_ago: int = 1,
    ) -> QuizSubmission:
        """``graded`` holds ``(question, is_correct)`` pairs."""
        correct = sum(1 for _, ok in graded if ok)
        submission = QuizSubmission(
            quiz_id=quiz.id,
            student_id=user.id,
            submission_date=utc_now() - timedelta(days=days_ago),
            answers=[{"question": q.id, "answer": "x", "isCorrect": ok} for q, ok in graded],
            final_score=round_half_up(correct / len(graded) * 100) if graded else 0,
        )
        session.add(submission)
        await session.commit()
        return submission

    return _make_submission
