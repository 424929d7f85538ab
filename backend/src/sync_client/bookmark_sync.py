"""
Client-side view of the signed-in user's bookmarks, kept current by the change stream.

BookmarkSync follows the SessionContext: when an identity is present it loads the
user's bookmarks and opens a change stream; when the identity goes away it clears
its cache, closes the stream, and stops talking to the API.
"""

import asyncio
import logging

import httpx

from . import api_client
from .change_stream import ChangeStream, open_change_stream
from .config import get_default_timeout
from .exceptions import ClientError, NotSignedInError
from .records import BookmarkRecord, ChangeEvent, ChangeType, Identity
from .session_context import AuthEvent, SessionContext

logger = logging.getLogger(__name__)


class BookmarkSync:
    """Bookmark cache for the current identity, with add/remove and live updates."""

    def __init__(self, client: httpx.AsyncClient, session: SessionContext) -> None:
        self._client = client
        self._session = session
        self._identity: Identity | None = None
        self._records: dict[str, BookmarkRecord] = {}
        self._stream: ChangeStream | None = None
        # Changes seen while a list request is in flight; None when not listing
        self._pending: dict[str, BookmarkRecord | None] | None = None
        self._lock = asyncio.Lock()
        self._unsubscribe_session = None
        self.error: ClientError | None = None

    @property
    def identity(self) -> Identity | None:
        """The identity the cache currently belongs to."""
        return self._identity

    @property
    def records(self) -> list[BookmarkRecord]:
        """Cached bookmarks, newest first."""
        return sorted(
            self._records.values(),
            key=lambda r: (r.created_at, r.id),
            reverse=True,
        )

    @property
    def stream(self) -> ChangeStream | None:
        """The open change stream, if any."""
        return self._stream

    async def start(self) -> None:
        """Follow the session, starting from its current identity."""
        if self._unsubscribe_session is None:
            self._unsubscribe_session = self._session.subscribe(self._on_session_event)
        await self._apply_identity(self._session.identity)

    async def _on_session_event(self, event: AuthEvent, identity: Identity | None) -> None:
        current = self._identity
        if (
            event is AuthEvent.TOKEN_REFRESHED
            and identity is not None
            and current is not None
            and identity.user_id == current.user_id
        ):
            # Same owner: later requests use the new token, a live stream stays
            async with self._lock:
                self._identity = identity
                if self._stream is None or not self._stream.is_open:
                    await self._open_stream(identity)
            return
        await self._apply_identity(identity)

    async def _apply_identity(self, identity: Identity | None) -> None:
        async with self._lock:
            if self._stream is not None:
                await self._stream.close()
                self._stream = None
            self._records.clear()
            self._identity = identity
            self.error = None
            if identity is None:
                return

            # Subscribe before listing so no change between the two is lost
            await self._open_stream(identity)
            try:
                self._records = await self._load(identity)
            except ClientError as e:
                logger.warning("Loading bookmarks for user %s failed: %s", identity.user_id, e)
                self.error = e

    async def _open_stream(self, identity: Identity) -> None:
        """Replace the current stream with a new one for `identity`. Caller holds the lock."""
        if self._stream is not None:
            await self._stream.close()
        self._stream = open_change_stream(self._client, identity, self._on_change)
        if not await self._stream.wait_connected(timeout=get_default_timeout()):
            logger.warning(
                "Change stream for user %s did not connect: %s",
                identity.user_id,
                self._stream.error,
            )

    async def _load(self, identity: Identity) -> dict[str, BookmarkRecord]:
        """List the user's bookmarks, merged with changes that arrived while listing."""
        self._pending = {}
        try:
            records = await api_client.list_bookmarks(self._client, identity)
        finally:
            pending, self._pending = self._pending, None
        loaded = {r.id: r for r in records}
        for record_id, record in pending.items():
            if record is None:
                loaded.pop(record_id, None)
            else:
                loaded[record_id] = record
        return loaded

    async def refresh(self) -> list[BookmarkRecord]:
        """
        Reload the cache from the API, reopening the change stream if it has ended.

        Returns [] while signed out.
        """
        async with self._lock:
            identity = self._identity
            if identity is None:
                return []
            if self._stream is None or not self._stream.is_open:
                await self._open_stream(identity)
            self._records = await self._load(identity)
            self.error = None
        return self.records

    async def add(self, title: str, url: str) -> BookmarkRecord:
        """
        Add a bookmark for the current identity.

        Raises:
            NotSignedInError: While signed out.
        """
        if self._identity is None:
            raise NotSignedInError("add")
        identity = self._identity
        record = await api_client.add_bookmark(self._client, identity, title, url)
        if self._identity is identity:
            self._records[record.id] = record
        return record

    async def remove(self, bookmark_id: str) -> None:
        """
        Remove a bookmark of the current identity.

        Raises:
            NotSignedInError: While signed out.
        """
        if self._identity is None:
            raise NotSignedInError("remove")
        identity = self._identity
        await api_client.remove_bookmark(self._client, identity, bookmark_id)
        if self._identity is identity:
            self._records.pop(bookmark_id, None)

    def _on_change(self, event: ChangeEvent) -> None:
        if self._identity is None or event.user_id != self._identity.user_id:
            return
        if event.type is ChangeType.INSERT:
            self._records[event.id] = event.record
        else:
            self._records.pop(event.id, None)
        if self._pending is not None:
            self._pending[event.id] = event.record if event.type is ChangeType.INSERT else None

    async def close(self) -> None:
        """Stop following the session and close the stream."""
        if self._unsubscribe_session is not None:
            self._unsubscribe_session()
            self._unsubscribe_session = None
        async with self._lock:
            if self._stream is not None:
                await self._stream.close()
                self._stream = None
