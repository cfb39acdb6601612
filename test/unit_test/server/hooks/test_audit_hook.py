import pytest
from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlmodel import select

from medprep_ai.core.database.entities.audit_logs import AuditLog
from medprep_ai.core.database.entities.courses import Category
from medprep_ai.core.database.entities.quizzes import QuizSubmission
from medprep_ai.server.core.context import current_user_id
from medprep_ai.server.hooks.audit import audit_before_flush, register_audit_hooks


@pytest.fixture(autouse=True)
def audit_hooks():
    register_audit_hooks()
    yield


@pytest.fixture
def acting_user():
    token = current_user_id.set("admin-1")
    yield "admin-1"
    current_user_id.reset(token)


async def entries(session, collection=None):
    stmt = select(AuditLog).where(AuditLog.action.in_(("create", "update", "delete")))
    if collection:
        stmt = stmt.where(AuditLog.collection == collection)
    return (await session.execute(stmt.order_by(AuditLog.timestamp))).scalars().all()


def test_registration_is_idempotent():
    register_audit_hooks()
    register_audit_hooks()
    assert event.contains(Session, "before_flush", audit_before_flush)


class TestAuditHook:
    async def test_create_is_recorded(self, session, acting_user):
        category = Category(title="Pneumologie")
        session.add(category)
        await session.commit()

        [entry] = await entries(session, "categories")
        assert entry.action == "create"
        assert entry.document_id == category.id
        assert entry.user_id == "admin-1"
        assert entry.diff["before"] is None
        assert entry.diff["after"]["title"] == "Pneumologie"

    async def test_update_keeps_previous_values(self, session):
        category = Category(title="Pneumo")
        session.add(category)
        await session.commit()

        category.title = "Pneumologie"
        await session.commit()

        update = [e for e in await entries(session, "categories") if e.action == "update"]
        assert len(update) == 1
        assert update[0].diff["before"]["title"] == "Pneumo"
        assert update[0].diff["after"]["title"] == "Pneumologie"
        assert update[0].user_id is None

    async def test_delete_is_recorded(self, session):
        category = Category(title="Néphrologie")
        session.add(category)
        await session.commit()

        await session.delete(category)
        await session.commit()

        actions = [e.action for e in await entries(session, "categories")]
        assert actions == ["create", "delete"]

    async def test_unaudited_models_are_skipped(self, session, make_user, make_category, make_question, make_quiz):
        user = await make_user()
        quiz = await make_quiz([await make_question(await make_category())])
        before = len(await entries(session))

        session.add(QuizSubmission(quiz_id=quiz.id, student_id=user.id, answers=[], final_score=0))
        await session.commit()

        assert len(await entries(session)) == before
