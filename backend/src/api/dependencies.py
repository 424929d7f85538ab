"""FastAPI dependencies for injection."""
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import get_current_user, get_stream_user
from core.config import get_settings
from db.policies import bind_identity, release_identity
from db.session import get_async_session
from models.user import User
from services.change_feed import ChangeFeed, get_change_feed


async def get_owner_session(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
) -> AsyncGenerator[AsyncSession]:
    """
    Yield the request session bound to the authenticated user.

    Row-level security evaluates every bookmark statement on this session against
    the current user's id, independently of the filters the services apply.
    """
    await bind_identity(db, current_user.id)
    yield db
    await release_identity(db)


def require_change_feed() -> ChangeFeed:
    """Return the application's change feed, or 503 if it is not running."""
    feed = get_change_feed()
    if feed is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Change feed unavailable",
        )
    return feed


__all__ = [
    "get_async_session",
    "get_current_user",
    "get_owner_session",
    "get_settings",
    "get_stream_user",
    "require_change_feed",
]
