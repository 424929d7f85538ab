"""
Change subscriptions over the store's per-owner notification channels.

The `notify_bookmark_change` trigger publishes every committed insert and delete
on `bookmarks:<user_id>`. A Subscription is one dedicated asyncpg connection
LISTENing on one owner's channel, so the owner filter is applied by the server.

Channels are a bounded resource: every open subscription pins a database
connection until it is unsubscribed. ChangeFeed caps how many can be open, and
OwnerSubscription holds at most one per logical consumer.
"""
import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from uuid import UUID

import asyncpg
import pydantic

from db.policies import channel_name
from schemas.bookmark import BookmarkChangeEvent
from services.exceptions import ChannelLimitError

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[BookmarkChangeEvent], Awaitable[None] | None]
LostHandler = Callable[[], None]

# Seconds to wait for a graceful connection close before terminating it
CLOSE_TIMEOUT_SECONDS = 5.0


class Subscription:
    """
    Handle for one open change channel.

    Use `unsubscribe()` (or `async with`) to release it; after that the handler is
    never invoked again.
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        owner_id: UUID,
        on_change: ChangeHandler,
        on_lost: LostHandler | None = None,
    ) -> None:
        self.owner_id = owner_id
        self._feed = feed
        self._on_change = on_change
        self._on_lost = on_lost
        self._connection: asyncpg.Connection | None = None
        self._closed = False
        self._pending: set[asyncio.Task] = set()

    @property
    def channel(self) -> str:
        """Notification channel this subscription listens on."""
        return channel_name(self.owner_id)

    @property
    def is_active(self) -> bool:
        """True while the channel is open and delivering events."""
        return self._connection is not None and not self._closed

    async def _open(self, dsn: str) -> None:
        connection = await asyncpg.connect(dsn)
        try:
            await connection.add_listener(self.channel, self._on_notification)
            connection.add_termination_listener(self._on_connection_lost)
        except Exception:
            connection.terminate()
            raise
        self._connection = connection
        logger.info("Opened change channel %s", self.channel)

    def _on_notification(
        self,
        _connection: asyncpg.Connection,
        _pid: int,
        channel: str,
        payload: str,
    ) -> None:
        if self._closed:
            return
        try:
            event = BookmarkChangeEvent.model_validate_json(payload)
        except pydantic.ValidationError:
            logger.warning("Discarding malformed notification on %s", channel)
            return
        # The channel is already owner-scoped; this mirrors it
        if event.user_id != self.owner_id:
            return

        try:
            result = self._on_change(event)
        except Exception:
            logger.exception("Change handler failed on %s", channel)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._handler_done)

    def _on_connection_lost(self, _connection: asyncpg.Connection) -> None:
        # Also called for the close in unsubscribe(), which sets _closed first
        if self._closed:
            return
        logger.warning("Change channel %s lost its database connection", self.channel)
        self._closed = True
        self._connection = None
        self._feed._release(self)
        for task in self._pending:
            task.cancel()
        if self._on_lost is not None:
            try:
                self._on_lost()
            except Exception:
                logger.exception("Lost-channel handler failed on %s", self.channel)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Change handler failed on %s", self.channel, exc_info=task.exception(),
            )

    async def unsubscribe(self) -> None:
        """Stop delivery and close the channel. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._feed._release(self)
        for task in self._pending:
            task.cancel()

        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close(timeout=CLOSE_TIMEOUT_SECONDS)
        finally:
            if not connection.is_closed():
                connection.terminate()
        logger.info("Closed change channel %s", self.channel)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.unsubscribe()


class ChangeFeed:
    """Opens owner-scoped change subscriptions against the store."""

    def __init__(self, dsn: str, max_channels: int = 100) -> None:
        self._dsn = dsn
        self._max_channels = max_channels
        self._subscriptions: set[Subscription] = set()

    @property
    def active_channels(self) -> int:
        """Number of currently open channels."""
        return len(self._subscriptions)

    @property
    def max_channels(self) -> int:
        """Upper bound on simultaneously open channels."""
        return self._max_channels

    async def subscribe(
        self,
        owner_id: UUID,
        on_change: ChangeHandler,
        on_lost: LostHandler | None = None,
    ) -> Subscription:
        """
        Open a channel delivering the committed inserts and deletes of one owner.

        `on_change` is called once per event with a BookmarkChangeEvent; it may be a
        plain function or a coroutine function.

        `on_lost` is called once if the channel's connection drops; the
        subscription is then inactive and its slot is free.

        Raises:
            ValueError: If owner_id is empty.
            ChannelLimitError: If every channel slot is in use.
        """
        if not owner_id:
            raise ValueError("owner_id is required to subscribe to changes")
        if len(self._subscriptions) >= self._max_channels:
            raise ChannelLimitError(self._max_channels)

        subscription = Subscription(self, owner_id, on_change, on_lost)
        # Reserve the slot before the first await
        self._subscriptions.add(subscription)
        opened = False
        try:
            await subscription._open(self._dsn)
            opened = True
        finally:
            if not opened:
                self._subscriptions.discard(subscription)
        return subscription

    def _release(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    async def close(self) -> None:
        """Release every open channel (application shutdown)."""
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()


class OwnerSubscription:
    """
    One logical consumer's subscription, following the consumer's current owner.

    Switching owners always closes the old channel before opening the new one, so
    the consumer never holds more than one channel.
    """

    def __init__(self, feed: ChangeFeed, on_change: ChangeHandler) -> None:
        self._feed = feed
        self._on_change = on_change
        self._current: Subscription | None = None
        self._lock = asyncio.Lock()

    @property
    def owner_id(self) -> UUID | None:
        """Owner of the open channel, or None when no channel is open."""
        if self._current is None or not self._current.is_active:
            return None
        return self._current.owner_id

    async def switch(self, owner_id: UUID | None) -> None:
        """Follow `owner_id`; None closes the channel without opening another."""
        async with self._lock:
            current = self._current
            if current is not None and current.is_active and current.owner_id == owner_id:
                return
            if current is not None:
                self._current = None
                await current.unsubscribe()
            if owner_id:
                self._current = await self._feed.subscribe(owner_id, self._on_change)

    async def close(self) -> None:
        """Release the channel, if any."""
        await self.switch(None)


# Global change feed state using a container to avoid global statement
class _ChangeFeedState:
    """Container for global change feed state."""

    feed: ChangeFeed | None = None


_state = _ChangeFeedState()


def get_change_feed() -> ChangeFeed | None:
    """Get the application-wide change feed, if one was started."""
    return _state.feed


def set_change_feed(feed: ChangeFeed | None) -> None:
    """Set the application-wide change feed (called from the app lifespan)."""
    _state.feed = feed
