"""
Unit tests for the adaptive question selection engine.

A seeded ``random.Random`` keeps the shuffles reproducible.
"""

import random
from datetime import datetime, timedelta

import pytest

from medprep_ai.core.database import new_id
from medprep_ai.core.database.entities.adaptive_quiz import AdaptiveQuizSession
from medprep_ai.core.database.entities.quizzes import Question
from medprep_ai.server.services.question_selection import (
    CategoryAvailability,
    DifficultyDistribution,
    QuestionSelectionEngine,
    SelectionCriteria,
)


@pytest.fixture
def engine(session):
    return QuestionSelectionEngine(session, rng=random.Random(42))


def _availability(kind, category_id, available):
    return CategoryAvailability(
        category_id=category_id,
        category_name=category_id,
        available_questions=available,
        requested_questions=0,
        can_fulfill=True,
        type=kind,
    )


class TestDistributionRules:
    def test_default_split(self):
        criteria = QuestionSelectionEngine.apply_distribution_rules(SelectionCriteria())
        assert criteria.target_weak_questions == 5
        assert criteria.target_strong_questions == 2

    def test_explicit_targets_are_kept(self):
        criteria = QuestionSelectionEngine.apply_distribution_rules(
            SelectionCriteria(target_weak_questions=6, target_strong_questions=4)
        )
        assert (criteria.target_weak_questions, criteria.target_strong_questions) == (6, 4)

    def test_default_difficulty_distribution(self):
        distribution = QuestionSelectionEngine.create_default_difficulty_distribution(7)
        assert distribution == DifficultyDistribution(easy=3, medium=3, hard=1)
        assert distribution.total == 7


class TestAdjustSelection:
    def test_weak_deficit_moves_to_strong(self, engine):
        criteria = SelectionCriteria(
            weak_categories=["w"], strong_categories=["s"], target_weak_questions=5, target_strong_questions=2
        )

        adjusted = engine.adjust_selection_for_availability(
            criteria, [_availability("weak", "w", 3), _availability("strong", "s", 10)]
        )

        assert adjusted.target_weak_questions == 3
        assert adjusted.target_strong_questions == 4

    def test_empty_categories_are_dropped(self, engine):
        criteria = SelectionCriteria(
            weak_categories=["w1", "w2"], strong_categories=["s"], target_weak_questions=5, target_strong_questions=2
        )

        adjusted = engine.adjust_selection_for_availability(
            criteria,
            [_availability("weak", "w1", 0), _availability("weak", "w2", 8), _availability("strong", "s", 0)],
        )

        assert adjusted.weak_categories == ["w2"]
        assert adjusted.strong_categories == []
        assert adjusted.target_weak_questions == 7
        assert adjusted.target_strong_questions == 0


class TestShuffle:
    def test_shuffle_keeps_every_question(self, engine):
        questions = [Question(question_text=f"q{i}") for i in range(10)]

        shuffled = engine.shuffle_questions(questions)

        assert sorted(q.question_text for q in shuffled) == sorted(q.question_text for q in questions)
        assert shuffled is not questions

    def test_balance_by_difficulty(self, engine):
        questions = (
            [Question(question_text=f"e{i}", difficulty="easy") for i in range(4)]
            + [Question(question_text=f"m{i}", difficulty="medium") for i in range(4)]
            + [Question(question_text="h0", difficulty="hard")]
        )

        balanced = engine.balance_by_difficulty(questions, DifficultyDistribution(easy=2, medium=2, hard=2))

        assert len(balanced) == 6
        assert sum(1 for q in balanced if q.difficulty == "hard") == 1


class TestSelectAdaptiveQuestions:
    async def test_weak_and_strong_split(self, session, engine, make_category, make_question):
        weak = await make_category("Cardiologie")
        strong = await make_category("Anatomie")
        for _ in range(8):
            await make_question(weak)
        for _ in range(4):
            await make_question(strong)

        result = await engine.select_adaptive_questions(
            SelectionCriteria(weak_categories=[weak.id], strong_categories=[strong.id], student_level="PASS")
        )

        assert result.total_questions == 7
        assert result.weak_questions == 5
        assert result.strong_questions == 2
        assert len({q.id for q in result.questions}) == 7
        assert {b["categoryName"]: b["questionsSelected"] for b in result.category_breakdown} == {
            "Cardiologie": 5,
            "Anatomie": 2,
        }

    async def test_excluded_questions_are_skipped(self, session, engine, make_category, make_question):
        weak = await make_category()
        questions = [await make_question(weak) for _ in range(6)]
        excluded = [q.id for q in questions[:2]]

        result = await engine.select_adaptive_questions(
            SelectionCriteria(weak_categories=[weak.id], student_level="PASS", exclude_question_ids=excluded)
        )

        assert result.total_questions == 4
        assert not set(excluded) & {q.id for q in result.questions}

    async def test_level_filter(self, session, engine, make_category, make_question):
        weak = await make_category()
        await make_question(weak, student_level="LAS")
        shared = await make_question(weak, student_level="both")

        picked = await engine.select_questions_from_categories([weak.id], 5, "PASS")

        assert [q.id for q in picked] == [shared.id]

    async def test_no_category_no_question(self, engine):
        assert await engine.select_questions_from_categories([], 5, "PASS") == []


class TestRecentQuestions:
    async def test_exclude_recent_questions(self, session, engine, make_user):
        user = await make_user()
        now = datetime(2026, 3, 10, 12, 0)
        for question_ids, created_at in (
            (["q1", "q2"], now - timedelta(days=1)),
            (["q2", "q3"], now - timedelta(days=3)),
            (["q9"], now - timedelta(days=10)),
        ):
            session.add(
                AdaptiveQuizSession(
                    session_id=f"adaptive_{new_id()[:12]}",
                    user_id=user.id,
                    question_ids=question_ids,
                    created_at=created_at,
                )
            )
        await session.commit()

        assert await engine.exclude_recent_questions(user.id, now=now) == ["q1", "q2", "q3"]


class TestSelectionStatistics:
    async def test_reports_shortfalls(self, session, engine, make_category, make_question):
        weak = await make_category("Cardiologie")
        await make_question(weak)

        stats = await engine.get_selection_statistics(
            SelectionCriteria(weak_categories=[weak.id], target_weak_questions=5, student_level="PASS")
        )

        assert stats["totalAvailableQuestions"] == 1
        assert stats["canFulfillRequest"] is False
        assert stats["weakCategoriesStats"] == [{"categoryId": weak.id, "available": 1, "requested": 5}]
        assert 'Category "Cardiologie" has only 1 questions, needs 5' in stats["recommendedAdjustments"]
