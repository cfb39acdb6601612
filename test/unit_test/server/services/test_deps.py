"""Unit tests for the endpoint dependencies.

Tests verify the caller resolution from the ``X-User-Id`` header and the
role guards built on top of it.
"""

import pytest
from fastapi import HTTPException

from medprep_ai.server.core.context import current_user_id
from medprep_ai.server.services.deps import (
    UNAUTHORIZED_MESSAGE,
    AdminUserDep,
    get_admin_user,
    get_current_user,
    get_optional_user,
    get_quiz_author,
)


class TestOptionalUser:
    async def test_without_header(self, session):
        assert await get_optional_user(session, None) is None

    async def test_unknown_user(self, session):
        assert await get_optional_user(session, "missing") is None

    async def test_known_user_is_published_in_context(self, session, make_user):
        user = await make_user()
        token = current_user_id.set(None)
        try:
            found = await get_optional_user(session, user.id)
            assert found.id == user.id
            assert current_user_id.get() == user.id
        finally:
            current_user_id.reset(token)


class TestRoleGuards:
    async def test_current_user_required(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == UNAUTHORIZED_MESSAGE

    async def test_admin_guard(self, make_user):
        admin = await make_user(role="admin")
        student = await make_user()

        assert await get_admin_user(admin) is admin
        with pytest.raises(HTTPException) as exc_info:
            await get_admin_user(student)
        assert exc_info.value.status_code == 403

    @pytest.mark.parametrize("role, allowed", [("teacher", True), ("superadmin", True), ("student", False)])
    async def test_quiz_author_guard(self, make_user, role, allowed):
        user = await make_user(role=role)

        if allowed:
            assert await get_quiz_author(user) is user
        else:
            with pytest.raises(HTTPException) as exc_info:
                await get_quiz_author(user)
            assert exc_info.value.status_code == 403

    def test_admin_dep_is_annotated(self):
        assert hasattr(AdminUserDep, "__metadata__")
        assert AdminUserDep.__metadata__[0].dependency is get_admin_user
