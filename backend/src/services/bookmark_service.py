"""
Service layer for ownership-scoped bookmark operations.

Every function takes the caller's owner id as an explicit argument and every
statement filters on it. The database's row-level security policies enforce the
same rule against the identity bound to the transaction (db.policies.bind_identity);
the filter here keeps application code from ever issuing an unscoped query, the
policies are the authority.

Note: Does not commit. Caller (session generator) handles commit at request end.
"""
import json
import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from models.bookmark import Bookmark
from schemas.bookmark import BookmarkCreate
from services.exceptions import MissingOwnerError, StoreError, ValidationError

logger = logging.getLogger(__name__)

# pg_notify rejects payloads of 8000 bytes or more. Change events carry the whole
# record, so title and url must leave room for the rest of the event.
MAX_EVENT_TEXT_BYTES = 7500


def _store_error(operation: str, owner_id: UUID, exc: SQLAlchemyError) -> StoreError:
    """Wrap a SQLAlchemy failure, keeping the driver's message."""
    message = str(exc.orig) if isinstance(exc, DBAPIError) and exc.orig else str(exc)
    logger.warning("Bookmark %s failed for owner %s: %s", operation, owner_id, message)
    return StoreError(message)


def normalize_field(value: str, field: str, max_length: int) -> str:
    """
    Trim a required text field.

    Raises:
        ValidationError: If the value is empty after trimming or too long.
    """
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{field.capitalize()} must not be empty")
    if len(trimmed) > max_length:
        raise ValidationError(
            f"{field.capitalize()} exceeds maximum length of {max_length} characters",
        )
    return trimmed


def event_text_size(value: str) -> int:
    """Bytes `value` takes up inside a JSON change event."""
    return len(json.dumps(value, ensure_ascii=False).encode()) - 2


async def add_bookmark(
    db: AsyncSession,
    owner_id: UUID,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Create a bookmark owned by `owner_id`.

    Args:
        db: Database session, normally bound to the caller's identity.
        owner_id: Owner of the new record.
        data: Title and URL; both are trimmed.

    Returns:
        The created bookmark with its generated id and created_at.

    Raises:
        MissingOwnerError: If owner_id is empty.
        ValidationError: If title or url is empty after trimming, or too long
            (per field in characters, together in encoded bytes).
        StoreError: If the insert fails, including a row-level security rejection
            when owner_id is not the identity bound to the transaction.
    """
    if not owner_id:
        raise MissingOwnerError("add")

    settings = get_settings()
    title = normalize_field(data.title, "title", settings.max_title_length)
    url = normalize_field(data.url, "url", settings.max_url_length)
    if event_text_size(title) + event_text_size(url) > MAX_EVENT_TEXT_BYTES:
        raise ValidationError(
            f"Title and url together exceed {MAX_EVENT_TEXT_BYTES} bytes",
        )

    bookmark = Bookmark(user_id=owner_id, title=title, url=url)
    try:
        # Savepoint: a rejected insert must not abort the request's transaction
        async with db.begin_nested():
            db.add(bookmark)
            await db.flush()
        await db.refresh(bookmark)
    except SQLAlchemyError as e:
        raise _store_error("add", owner_id, e) from e
    return bookmark


async def list_bookmarks(
    db: AsyncSession,
    owner_id: UUID | None,
) -> list[Bookmark]:
    """
    Get all bookmarks owned by `owner_id`, newest first.

    An absent owner id is a guard condition, not an error: the result is empty and
    the store is not queried, so a caller without a resolved identity can never
    issue an unscoped query.

    Raises:
        StoreError: If the query fails.
    """
    if not owner_id:
        return []

    try:
        result = await db.execute(
            select(Bookmark)
            .where(Bookmark.user_id == owner_id)
            .order_by(Bookmark.created_at.desc(), Bookmark.id.desc()),
        )
    except SQLAlchemyError as e:
        raise _store_error("list", owner_id, e) from e
    return list(result.scalars().all())


async def remove_bookmark(
    db: AsyncSession,
    owner_id: UUID,
    bookmark_id: UUID,
) -> None:
    """
    Delete a bookmark only if both its id and owner match.

    Removing a missing or foreign bookmark is a silent no-op; there is no
    "not found" signal.

    Raises:
        MissingOwnerError: If owner_id is empty.
        StoreError: If the delete fails.
    """
    if not owner_id:
        raise MissingOwnerError("remove")

    try:
        async with db.begin_nested():
            result = await db.execute(
                delete(Bookmark).where(
                    Bookmark.id == bookmark_id,
                    Bookmark.user_id == owner_id,
                ),
            )
    except SQLAlchemyError as e:
        raise _store_error("remove", owner_id, e) from e

    if result.rowcount == 0:
        logger.debug("Bookmark %s not removed: absent or not owned by %s", bookmark_id, owner_id)
