"""Value types shared by the sync client."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """A signed-in user: owner id plus the access token issued for them."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    access_token: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """True if the token has an expiry in the past."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at <= now


class BookmarkRecord(BaseModel):
    """A bookmark as returned by the API."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    title: str
    url: str
    created_at: datetime


class ChangeType(StrEnum):
    """Kind of change delivered on the change stream."""

    INSERT = "INSERT"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One committed insert or delete delivered on the change stream."""

    type: ChangeType
    id: str
    user_id: str
    record: BookmarkRecord
