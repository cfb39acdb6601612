"""Unit tests for the adaptive quiz, performance, user and audit repositories."""

from __future__ import annotations

from datetime import datetime, timedelta

from medprep_ai.core.database.entities.adaptive_quiz import AdaptiveQuizResult, AdaptiveQuizSession, UserPerformance
from medprep_ai.core.database.entities.audit_logs import AuditLog
from medprep_ai.core.database.entities.users import User
from medprep_ai.core.database.repositories import (
    AdaptiveQuizResultRepository,
    AdaptiveQuizSessionRepository,
    AuditLogRepository,
    UserPerformanceRepository,
    UserRepository,
)

NOW = datetime(2026, 3, 10, 12, 0)


async def add_sessions(session, user_id, hours_ago):
    rows = [
        AdaptiveQuizSession(session_id=f"adaptive_{user_id}_{hours}", user_id=user_id, created_at=NOW - timedelta(hours=hours))
        for hours in hours_ago
    ]
    session.add_all(rows)
    await session.commit()
    return rows


class TestAdaptiveQuizSessionRepository:
    async def test_get_by_public_session_id(self, session):
        await add_sessions(session, "u1", [1])
        repository = AdaptiveQuizSessionRepository(session)

        found = await repository.get_by_session_id("adaptive_u1_1")

        assert found.user_id == "u1"
        assert await repository.get_by_session_id("adaptive_missing") is None

    async def test_counts_and_latest(self, session):
        await add_sessions(session, "u1", [1, 5, 30])
        await add_sessions(session, "u2", [0])
        repository = AdaptiveQuizSessionRepository(session)

        assert await repository.count_created_since("u1", NOW - timedelta(hours=24)) == 2
        assert await repository.count_for_user("u1") == 3
        assert (await repository.get_latest_for_user("u1")).session_id == "adaptive_u1_1"
        assert await repository.get_latest_for_user("nobody") is None

    async def test_listing(self, session):
        await add_sessions(session, "u1", [3, 1, 2])
        repository = AdaptiveQuizSessionRepository(session)

        recent = await repository.list_created_since("u1", NOW - timedelta(hours=2, minutes=30))
        assert [s.session_id for s in recent] == ["adaptive_u1_1", "adaptive_u1_2"]

        page = await repository.list_for_user("u1", limit=2, offset=1)
        assert [s.session_id for s in page] == ["adaptive_u1_2", "adaptive_u1_3"]


class TestAdaptiveQuizResultRepository:
    async def test_result_lookups(self, session):
        quiz_session = (await add_sessions(session, "u1", [2]))[0]
        session.add_all(
            [
                AdaptiveQuizResult(session_id=quiz_session.id, user_id="u1", success_rate=60, completed_at=NOW - timedelta(days=2)),
                AdaptiveQuizResult(session_id="other", user_id="u1", success_rate=80, completed_at=NOW),
            ]
        )
        await session.commit()
        repository = AdaptiveQuizResultRepository(session)

        assert (await repository.get_by_session(quiz_session.id)).success_rate == 60
        recent = await repository.list_recent_for_user("u1", limit=1)
        assert [r.success_rate for r in recent] == [80]


class TestUserPerformanceRepository:
    async def test_get_and_delete_snapshot(self, session):
        session.add(UserPerformance(user_id="u1", overall_success_rate=72.5))
        await session.commit()
        repository = UserPerformanceRepository(session)

        assert (await repository.get_by_user("u1")).overall_success_rate == 72.5
        assert await repository.delete_by_user("u1") is True
        assert await repository.get_by_user("u1") is None
        assert await repository.delete_by_user("u1") is False


class TestUserRepository:
    async def test_get_by_email(self, session):
        session.add(User(email="lea@medprep.test", role="teacher"))
        await session.commit()
        repository = UserRepository(session)

        assert (await repository.get_by_email("lea@medprep.test")).role == "teacher"
        assert await repository.get_by_email("nobody@medprep.test") is None


class TestAuditLogRepository:
    async def test_reporting_queries(self, session):
        session.add_all(
            [
                AuditLog(action="adaptive_quiz_error", timestamp=NOW - timedelta(hours=30)),
                AuditLog(action="adaptive_quiz_error", timestamp=NOW - timedelta(hours=1)),
                AuditLog(action="update", collection="quizzes", document_id="quiz-1", timestamp=NOW - timedelta(hours=2)),
                AuditLog(action="create", collection="quizzes", document_id="quiz-1", timestamp=NOW - timedelta(hours=3)),
            ]
        )
        await session.commit()
        repository = AuditLogRepository(session)

        errors = await repository.list_by_action_since("adaptive_quiz_error", NOW - timedelta(hours=24))
        assert len(errors) == 1

        trail = await repository.list_for_document("quizzes", "quiz-1")
        assert [entry.action for entry in trail] == ["create", "update"]
        assert len(await repository.list_for_document("quizzes", "quiz-1", action="update")) == 1
