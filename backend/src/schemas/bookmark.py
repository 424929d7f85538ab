"""Pydantic schemas for bookmark endpoints and change events."""
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class BookmarkCreate(BaseModel):
    """
    Schema for creating a new bookmark.

    Values are trimmed and checked for emptiness/length by the service layer,
    which is the one place that rule lives.
    """

    title: str
    url: str


class BookmarkResponse(BaseModel):
    """Schema for bookmark responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    url: str
    created_at: datetime


class BookmarkChangeType(StrEnum):
    """Kind of committed change carried by a notification."""

    INSERT = "INSERT"
    DELETE = "DELETE"


class BookmarkChangeEvent(BaseModel):
    """
    One committed insert or delete on the bookmarks table.

    Built from the JSON payload published by the `notify_bookmark_change` trigger.
    For deletes, `record` is the row as it was before deletion.
    """

    type: BookmarkChangeType
    id: UUID
    user_id: UUID
    record: BookmarkResponse
