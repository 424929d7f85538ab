"""SQLAlchemy models."""
from models.base import Base, CreatedAtMixin, TimestampMixin, UUIDv7Mixin
from models.bookmark import Bookmark
from models.user import User

__all__ = ["Base", "Bookmark", "CreatedAtMixin", "TimestampMixin", "UUIDv7Mixin", "User"]
