"""
Endpoint dependencies.

The caller is identified by the ``X-User-Id`` header and resolved against
the users table. The resolved id is also published in the request context
for the audit hook.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from medprep_ai.core.database import get_session
from medprep_ai.core.database.entities.users import User, UserRole
from medprep_ai.core.database.repositories import UserRepository
from medprep_ai.server.core.context import current_user_id

SessionDep = Annotated[AsyncSession, Depends(get_session)]

UNAUTHORIZED_MESSAGE = "Non autorisé. Vous devez être connecté."


async def get_optional_user(
    session: SessionDep,
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Optional[User]:
    if not x_user_id:
        return None
    user = await UserRepository(session).get_by_id(x_user_id)
    if user is not None:
        current_user_id.set(user.id)
    return user


OptionalUserDep = Annotated[Optional[User], Depends(get_optional_user)]


async def get_current_user(user: OptionalUserDep) -> User:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED_MESSAGE)
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


async def get_admin_user(user: CurrentUserDep) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès réservé aux administrateurs")
    return user


AdminUserDep = Annotated[User, Depends(get_admin_user)]


async def get_quiz_author(user: CurrentUserDep) -> User:
    if not user.is_admin and user.role != UserRole.TEACHER.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Accès réservé aux administrateurs et enseignants"
        )
    return user


QuizAuthorDep = Annotated[User, Depends(get_quiz_author)]
