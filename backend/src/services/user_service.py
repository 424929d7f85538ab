"""Service layer for user lifecycle."""
import logging
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from models.user import User

logger = logging.getLogger(__name__)


async def delete_user(db: AsyncSession, user_id: UUID) -> bool:
    """
    Delete a user. Returns True if deleted, False if not found.

    The database cascades the delete to every bookmark the user owns, and the
    notify trigger publishes a DELETE event for each of them once committed.

    Must run on a session that is not bound to an identity: the owner role has no
    privileges on the users table beyond SELECT.

    Note: Does not commit. Caller (session generator) handles commit at request end.
    """
    result = await db.execute(delete(User).where(User.id == user_id))
    deleted = result.rowcount > 0
    if deleted:
        logger.info("Deleted user %s and their bookmarks", user_id)
    return deleted
