"""
Unit tests for the adaptive quiz orchestration service.

Generation is exercised end to end against a seeded question bank; result
scoring is checked on sessions opened through the service itself.
"""

import random
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from medprep_ai.core.database import new_id, utc_now
from medprep_ai.core.database.entities.adaptive_quiz import AdaptiveQuizResult, AdaptiveQuizSession
from medprep_ai.core.database.entities.quizzes import Question
from medprep_ai.server.services.adaptive_quiz import AdaptiveQuizService, new_session_id
from medprep_ai.server.services.errors import AdaptiveQuizException
from medprep_ai.server.services.question_selection import QuestionSelectionEngine


@pytest.fixture
def service(session):
    return AdaptiveQuizService(session, QuestionSelectionEngine(session, rng=random.Random(7)))


@pytest.fixture
def ready_student(make_user, make_category, make_question, make_quiz, make_submission):
    """A student with three graded quizzes over cardiology (weak) and anatomy (strong)."""

    async def _seed(question_level: str = "PASS", submissions: int = 3, study_year: str = "pass"):
        user = await make_user(study_year=study_year)
        cardio = await make_category("Cardiologie")
        anatomy = await make_category("Anatomie")
        cardio_questions = [await make_question(cardio, student_level=question_level) for _ in range(8)]
        anatomy_questions = [await make_question(anatomy, student_level=question_level) for _ in range(4)]
        quiz = await make_quiz(cardio_questions[:3] + anatomy_questions[:3])
        for _ in range(submissions):
            await make_submission(
                user,
                quiz,
                [(cardio_questions[0], True), (cardio_questions[1], False), (cardio_questions[2], False)]
                + [(q, True) for q in anatomy_questions[:3]],
            )
        return user, cardio_questions, anatomy_questions

    return _seed


def test_new_session_id_format():
    session_id = new_session_id()
    prefix, stamp, suffix = session_id.split("_")
    assert prefix == "adaptive"
    assert stamp.isdigit()
    assert len(suffix) == 9
    assert new_session_id("session", 13).startswith("session_")


class TestGenerateAdaptiveQuiz:
    async def test_generates_session(self, session, service, ready_student):
        user, _, _ = await ready_student()

        quiz = await service.generate_adaptive_quiz(user.id)

        assert quiz["sessionId"].startswith("adaptive_")
        question_ids = [q["id"] for q in quiz["questions"]]
        assert len(question_ids) == 7
        assert len(set(question_ids)) == 7
        metadata = quiz["metadata"]
        assert metadata["studentLevel"] == "PASS"
        assert metadata["questionDistribution"] == {
            "weakCategoryQuestions": 5,
            "strongCategoryQuestions": 2,
            "totalQuestions": 7,
        }
        assert metadata["basedOnAnalytics"]["weakCategories"][0]["title"] == "Cardiologie"
        assert metadata["config"]["targetSuccessRate"] == 0.6

        stored = (
            await session.execute(select(AdaptiveQuizSession).where(AdaptiveQuizSession.session_id == quiz["sessionId"]))
        ).scalars().one()
        assert stored.user_id == user.id
        assert stored.status == "active"
        assert stored.questions_count == 7
        assert sorted(stored.question_ids) == sorted(question_ids)
        assert stored.expires_at - stored.created_at > timedelta(hours=23)

    async def test_insufficient_data(self, service, ready_student):
        user, _, _ = await ready_student(submissions=1)

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.generate_adaptive_quiz(user.id)

        assert exc_info.value.error_type == "insufficient_data"

    async def test_level_not_set(self, service, ready_student):
        user, _, _ = await ready_student(study_year=None)

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.generate_adaptive_quiz(user.id)

        assert exc_info.value.error_type == "level_not_set"

    async def test_insufficient_questions(self, service, ready_student):
        user, _, _ = await ready_student(question_level="LAS")

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.generate_adaptive_quiz(user.id)

        assert exc_info.value.error_type == "insufficient_questions"

    async def test_cooldown(self, session, service, ready_student):
        user, _, _ = await ready_student()
        session.add(AdaptiveQuizSession(session_id=f"adaptive_{new_id()[:12]}", user_id=user.id))
        await session.commit()

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.generate_adaptive_quiz(user.id)

        assert exc_info.value.error_type == "cooldown_active"
        assert exc_info.value.details["value"] in (29, 30)

    async def test_daily_limit(self, session, service, ready_student, monkeypatch):
        from medprep_ai.server.core.config import settings

        monkeypatch.setattr(settings, "adaptive_quiz_daily_limit", 1)
        user, _, _ = await ready_student()
        session.add(AdaptiveQuizSession(session_id=f"adaptive_{new_id()[:12]}", user_id=user.id))
        await session.commit()

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.generate_adaptive_quiz(user.id)

        assert exc_info.value.error_type == "daily_limit_exceeded"

    async def test_unknown_user_is_technical_error(self, service):
        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.generate_adaptive_quiz("ghost")

        assert exc_info.value.error_type == "technical_error"


class TestValidatePrerequisites:
    async def test_warns_before_daily_limit(self, session, service, ready_student):
        user, _, _ = await ready_student()
        for _ in range(4):
            session.add(AdaptiveQuizSession(session_id=f"adaptive_{new_id()[:12]}", user_id=user.id))
        await session.commit()

        validation = await service.validate_prerequisites(user.id)

        assert validation == {"isValid": True, "errors": [], "warnings": ["approaching_daily_limit"]}

    async def test_collects_every_error(self, service, make_user):
        user = await make_user(study_year=None)

        validation = await service.validate_prerequisites(user.id)

        assert validation["isValid"] is False
        assert validation["errors"] == ["level_not_set", "insufficient_data"]


class TestCreateSession:
    async def test_requires_questions(self, service, make_user):
        user = await make_user()

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.create_session(user.id, {"questions": []})

        assert exc_info.value.error_type == "validation_error"

    async def test_defaults(self, service, make_user):
        user = await make_user()

        quiz_session = await service.create_session(user.id, {"questions": ["q1", "q2"]})

        assert quiz_session.session_id.startswith("session_")
        assert quiz_session.student_level == "PASS"
        assert quiz_session.questions_count == 2
        assert quiz_session.expires_at > utc_now() + timedelta(hours=23)

    async def test_explicit_expiry(self, service, make_user):
        user = await make_user()

        quiz_session = await service.create_session(
            user.id, {"questions": ["q1"], "expiresAt": "2030-01-01T10:00:00Z", "studentLevel": "LAS"}
        )

        assert quiz_session.expires_at == datetime(2030, 1, 1, 10, 0)
        assert quiz_session.student_level == "LAS"

    async def test_expiry_offset_is_converted_to_utc(self, service, make_user):
        user = await make_user()

        quiz_session = await service.create_session(
            user.id, {"questions": ["q1"], "expiresAt": "2030-01-01T12:00:00+02:00"}
        )

        assert quiz_session.expires_at == datetime(2030, 1, 1, 10, 0)

    async def test_aware_datetime_expiry(self, service, make_user):
        user = await make_user()
        expires_at = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5)))

        quiz_session = await service.create_session(user.id, {"questions": ["q1"], "expiresAt": expires_at})

        assert quiz_session.expires_at == datetime(2030, 1, 1, 17, 0)

    async def test_malformed_expiry(self, service, make_user):
        user = await make_user()

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.create_session(user.id, {"questions": ["q1"], "expiresAt": "next tuesday"})

        assert exc_info.value.error_type == "validation_error"
        assert exc_info.value.details["field"] == "expiresAt"


class TestSaveAdaptiveQuizResults:
    async def test_scores_per_category(self, session, service, make_user, make_category, make_question):
        user = await make_user()
        cardio = await make_category("Cardiologie")
        anatomy = await make_category("Anatomie")
        c1, c2 = await make_question(cardio), await make_question(cardio)
        a1 = await make_question(anatomy)
        quiz_session = await service.create_session(user.id, {"questions": [c1.id, c2.id, a1.id]})

        result = await service.save_adaptive_quiz_results(
            quiz_session.session_id,
            {c1.id: c1.options[0]["id"], c2.id: c2.options[2]["id"], a1.id: [a1.options[0]["id"]]},
            time_spent=240,
        )

        assert result.overall_score == 2
        assert result.max_score == 3
        assert result.success_rate == pytest.approx(2 / 3)
        assert result.time_spent == 240
        by_category = {r["category"]: r for r in result.category_results}
        assert by_category[cardio.id]["successRate"] == 0.5
        assert by_category[cardio.id]["previousSuccessRate"] is None
        assert result.improvement_areas == [{"categoryId": cardio.id, "categoryName": "Cardiologie"}]
        assert result.strength_areas == [{"categoryId": anatomy.id, "categoryName": "Anatomie"}]
        assert [r["type"] for r in result.recommendations] == ["review_material", "maintain_strength"]
        assert result.next_adaptive_quiz_available_at - result.completed_at == timedelta(minutes=30)

        refreshed = await session.get(AdaptiveQuizSession, quiz_session.id)
        assert refreshed.status == "completed"
        question = await session.get(Question, c1.id)
        assert question.adaptive_metadata == {"timesUsed": 1, "successRate": 1.0}

    async def test_completed_session_is_rejected(self, service, make_user, make_category, make_question):
        user = await make_user()
        question = await make_question(await make_category())
        quiz_session = await service.create_session(user.id, {"questions": [question.id]})
        await service.save_adaptive_quiz_results(quiz_session.session_id, {question.id: "nope"})

        with pytest.raises(AdaptiveQuizException) as exc_info:
            await service.save_adaptive_quiz_results(quiz_session.session_id, {question.id: "nope"})

        assert exc_info.value.error_type == "session_already_completed"

    async def test_unknown_and_expired_sessions(self, service, make_user):
        user = await make_user()
        quiz_session = await service.create_session(
            user.id, {"questions": ["q1"], "expiresAt": "2020-01-01T00:00:00Z"}
        )

        with pytest.raises(AdaptiveQuizException, match="session_expired"):
            await service.get_active_session(quiz_session.session_id)
        with pytest.raises(AdaptiveQuizException, match="session_not_found"):
            await service.get_active_session("missing")


class TestSaveResult:
    async def test_client_result(self, session, service, make_user):
        user = await make_user()
        quiz_session = await service.create_session(user.id, {"questions": ["q1"]})

        result = await service.save_result(
            user.id,
            {"sessionId": quiz_session.session_id, "overallScore": 3, "maxScore": 5, "successRate": 0.6, "totalTimeMs": 125400},
        )

        assert result.time_spent == 125
        assert result.session_id == quiz_session.id
        assert (await service.get_result_for_session(quiz_session.session_id)).id == result.id
        assert (await session.get(AdaptiveQuizSession, quiz_session.id)).status == "completed"

    async def test_time_spent_rounds_halves_up(self, service, make_user):
        user = await make_user()
        quiz_session = await service.create_session(user.id, {"questions": ["q1"]})

        result = await service.save_result(user.id, {"sessionId": quiz_session.session_id, "totalTimeMs": 2500})

        assert result.time_spent == 3

    async def test_unknown_session(self, service, make_user):
        user = await make_user()
        with pytest.raises(AdaptiveQuizException, match="session_not_found"):
            await service.save_result(user.id, {"sessionId": "missing"})


class TestRecommendations:
    async def test_declining_weak_category(self, service):
        recommendations = await service.generate_personalized_recommendations(
            [{"category": "c1", "categoryName": "Cardio", "successRate": 0.2, "scoreImprovement": -0.3}]
        )

        assert [r["type"] for r in recommendations] == ["study_more", "practice_quiz", "focus_category"]
        assert all(r["priority"] == "high" for r in recommendations)
        assert recommendations[0]["recommendationId"].startswith("study_c1_")

    async def test_sorted_and_capped(self, service):
        results = [
            {"category": "strong", "categoryName": "S", "successRate": 0.9},
            {"category": "mid", "categoryName": "M", "successRate": 0.6},
            {"category": "weak1", "categoryName": "W1", "successRate": 0.1},
            {"category": "weak2", "categoryName": "W2", "successRate": 0.3},
        ]

        recommendations = await service.generate_personalized_recommendations(results)

        assert len(recommendations) == 5
        assert [r["priority"] for r in recommendations] == ["high", "high", "high", "high", "medium"]

    async def test_between_seventy_and_eighty_percent(self, service):
        assert await service.generate_personalized_recommendations(
            [{"category": "c", "categoryName": "C", "successRate": 0.75}]
        ) == []


class TestProgress:
    async def _add_result(self, session, user_id, completed_at, success_rate=0.5):
        quiz_session = AdaptiveQuizSession(session_id=f"adaptive_{new_id()[:12]}", user_id=user_id)
        session.add(quiz_session)
        await session.commit()
        session.add(
            AdaptiveQuizResult(
                session_id=quiz_session.id, user_id=user_id, success_rate=success_rate, completed_at=completed_at
            )
        )
        await session.commit()

    async def test_streak_days(self, session, service, make_user):
        user = await make_user()
        now = datetime(2026, 3, 10, 12, 0)
        for days_ago in (0, 0, 1, 3):
            await self._add_result(session, user.id, now - timedelta(days=days_ago))

        assert await service.calculate_streak_days(user.id, now) == 2

    async def test_improving_trend(self, session, service, make_user):
        user = await make_user()
        now = datetime(2026, 3, 10, 12, 0)
        await self._add_result(session, user.id, now - timedelta(days=1), success_rate=0.4)

        progress = await service.calculate_progress_comparison(user.id, [{"successRate": 0.8}], now)

        assert progress["trend"] == "improving"
        assert progress["previousAverageScore"] == 0.4
        assert progress["improvement"] == pytest.approx(0.4)
        assert progress["streakDays"] == 0
        assert progress["lastQuizDate"] == "2026-03-09T12:00:00"

    async def test_without_history(self, service, make_user):
        user = await make_user()

        progress = await service.calculate_progress_comparison(user.id, [])

        assert progress == {"currentScore": 0.0, "trend": "stable", "streakDays": 0}


class TestHistory:
    async def test_paginates_sessions(self, service, make_user):
        user = await make_user()
        first = await service.create_session(user.id, {"questions": ["q1"]})
        await service.save_result(user.id, {"sessionId": first.session_id, "successRate": 1.0})

        history = await service.get_history(user.id, page=1, limit=10)

        assert history["totalDocs"] == 1
        assert history["totalPages"] == 1
        assert history["hasNextPage"] is False
        doc = history["docs"][0]
        assert doc["sessionId"] == first.session_id
        assert doc["result"]["successRate"] == 1.0
