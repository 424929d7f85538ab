"""Bookmark model for storing user bookmarks."""
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.policies import attach_store_policies
from models.base import Base, CreatedAtMixin, UUIDv7Mixin

if TYPE_CHECKING:
    from models.user import User


class Bookmark(Base, UUIDv7Mixin, CreatedAtMixin):
    """
    Bookmark model - a titled URL owned by exactly one user.

    Rows are immutable after creation: there is no updated_at column and the
    owner role has no UPDATE grant. Deleting the owning user cascades.
    """

    __tablename__ = "bookmarks"

    # id provided by UUIDv7Mixin
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    user: Mapped["User"] = relationship(back_populates="bookmarks")


attach_store_policies(Bookmark.__table__)
