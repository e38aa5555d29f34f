"""FastAPI dependencies for authentication and request context."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotAuthenticated
from ..models import User
from .changes import ChangeFeed, change_feed
from .database import get_session, get_session_factory
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser:
    """Represents the authenticated user context."""

    def __init__(self, user: User):
        self.user = user

    @property
    def id(self) -> UUID:
        return self.user.id


BearerCredentials = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]


async def authenticate(
    session: AsyncSession,
    credentials: HTTPAuthorizationCredentials | None,
) -> CurrentUser:
    """Resolve bearer credentials to a user, or raise NotAuthenticated."""
    if not credentials:
        raise NotAuthenticated("Not authenticated")

    payload = decode_token(credentials.credentials)
    if not payload or payload.type != "access":
        raise NotAuthenticated("Invalid or expired token")

    try:
        user_id = UUID(payload.sub)
    except ValueError:
        raise NotAuthenticated("Invalid token subject")

    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        logger.warning(f"Token for unknown user {user_id}")
        raise NotAuthenticated("User not found")

    return CurrentUser(user=user)


async def get_current_user(
    credentials: BearerCredentials,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentUser:
    """Dependency to get the current authenticated user from a bearer JWT."""
    return await authenticate(session, credentials)


def get_change_feed() -> ChangeFeed:
    return change_feed


# Type aliases for cleaner dependency injection
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
ChangeFeedDep = Annotated[ChangeFeed, Depends(get_change_feed)]
