"""Client for the Bookmarks API: session handling, API calls, and live change sync."""

from .api_client import create_client
from .bookmark_sync import BookmarkSync
from .change_stream import ChangeStream, iter_sse_events, open_change_stream
from .credentials import CredentialStore
from .exceptions import (
    AuthenticationError,
    ClientError,
    NotSignedInError,
    StoreError,
    ValidationError,
)
from .records import BookmarkRecord, ChangeEvent, ChangeType, Identity
from .session_context import AuthEvent, SessionContext

__all__ = [
    "AuthEvent",
    "AuthenticationError",
    "BookmarkRecord",
    "BookmarkSync",
    "ChangeEvent",
    "ChangeStream",
    "ChangeType",
    "ClientError",
    "CredentialStore",
    "Identity",
    "NotSignedInError",
    "SessionContext",
    "StoreError",
    "ValidationError",
    "create_client",
    "iter_sse_events",
    "open_change_stream",
]
