"""Bookmark endpoints: add, list, remove."""
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_current_user, get_owner_session
from models.user import User
from schemas.bookmark import BookmarkCreate, BookmarkResponse
from services import bookmark_service

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.post("/", response_model=BookmarkResponse, status_code=201)
async def create_bookmark(
    data: BookmarkCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_owner_session),
) -> BookmarkResponse:
    """Create a new bookmark owned by the current user."""
    bookmark = await bookmark_service.add_bookmark(db, current_user.id, data)
    return BookmarkResponse.model_validate(bookmark)


@router.get("/", response_model=list[BookmarkResponse])
async def list_bookmarks(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_owner_session),
) -> list[BookmarkResponse]:
    """List the current user's bookmarks, newest first."""
    bookmarks = await bookmark_service.list_bookmarks(db, current_user.id)
    return [BookmarkResponse.model_validate(b) for b in bookmarks]


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_owner_session),
) -> None:
    """
    Delete a bookmark.

    Always 204: a bookmark that does not exist, or belongs to someone else, is left
    untouched and the response does not reveal which case applied.
    """
    await bookmark_service.remove_bookmark(db, current_user.id, bookmark_id)
