"""
Client side of the change feed: reads `GET /bookmarks/changes` (Server-Sent Events).

A ChangeStream is one open HTTP stream for one identity. It must be closed when
the identity changes or the consumer goes away; every open stream holds a
channel (and a database connection) on the server.
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx
import pydantic

from .records import ChangeEvent, Identity

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], Awaitable[None] | None]


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """
    Parse an SSE line stream into (event, data) pairs.

    Comment lines (starting with ':') are skipped; multi-line data is joined with
    newlines.
    """
    event = "message"
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield event, "\n".join(data)


class ChangeStream:
    """One open change stream, delivering events to `on_change` until closed."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        identity: Identity,
        on_change: ChangeHandler,
    ) -> None:
        self.identity = identity
        self._client = client
        self._on_change = on_change
        self._task: asyncio.Task | None = None
        self._connected = asyncio.Event()
        self._closed = False
        self.error: Exception | None = None

    @property
    def is_open(self) -> bool:
        """True from start() until the stream ends or is closed."""
        return self._task is not None and not self._task.done() and not self._closed

    @property
    def connected(self) -> bool:
        """True once the server has accepted the stream."""
        return self._connected.is_set()

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    def start(self) -> None:
        """Open the stream in a background task."""
        if self._task is not None:
            raise RuntimeError("ChangeStream already started")
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        headers = {
            "Authorization": f"Bearer {self.identity.access_token}",
            "Accept": "text/event-stream",
        }
        try:
            async with self._client.stream(
                "GET", "/bookmarks/changes", headers=headers, timeout=None,
            ) as response:
                response.raise_for_status()
                # The server subscribes before it sends response headers
                self._connected.set()
                async for event_type, data in iter_sse_events(response.aiter_lines()):
                    await self._dispatch(event_type, data)
        except httpx.HTTPError as e:
            # No automatic reconnect; the owner decides whether to open a new stream
            logger.warning("Change stream for user %s ended: %s", self.identity.user_id, e)
            self.error = e

    async def _dispatch(self, event_type: str, data: str) -> None:
        try:
            event = ChangeEvent.model_validate_json(data)
        except pydantic.ValidationError:
            logger.warning("Discarding malformed %s change event", event_type)
            return
        if event.user_id != self.identity.user_id:
            return
        try:
            result = self._on_change(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Change handler failed for %s event", event.type)

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """
        Wait until the server has subscribed this stream to the user's changes.

        Returns False if the stream ended first (see `error`) or `timeout` elapsed.
        Changes committed after a True return are delivered to `on_change`.
        """
        if self._task is None:
            raise RuntimeError("ChangeStream not started")
        connected = asyncio.create_task(self._connected.wait())
        try:
            await asyncio.wait(
                {connected, self._task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            connected.cancel()
        return self._connected.is_set()

    async def wait(self) -> None:
        """Wait until the server ends the stream."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


def open_change_stream(
    client: httpx.AsyncClient,
    identity: Identity,
    on_change: ChangeHandler,
) -> ChangeStream:
    """Start a change stream for `identity`; the caller owns closing it."""
    stream = ChangeStream(client, identity, on_change)
    stream.start()
    return stream
