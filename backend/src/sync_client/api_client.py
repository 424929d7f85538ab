"""
HTTP client functions for the Bookmarks API.

Each operation takes the caller's identity explicitly. With no identity, `list`
returns an empty result without a request, and mutations raise NotSignedInError.
"""

import logging
from datetime import datetime
from typing import Any

import httpx

from .config import get_api_base_url, get_default_timeout
from .exceptions import AuthenticationError, NotSignedInError, StoreError, ValidationError
from .records import BookmarkRecord, Identity

logger = logging.getLogger(__name__)


def create_client(
    base_url: str | None = None,
    timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create the HTTP client for the Bookmarks API, defaulting to the environment's settings."""
    return httpx.AsyncClient(
        base_url=base_url or get_api_base_url(),
        timeout=timeout if timeout is not None else get_default_timeout(),
    )


def _get_headers(token: str) -> dict[str, str]:
    """Get common headers for API requests."""
    return {
        "Authorization": f"Bearer {token}",
        "X-Request-Source": "sync-client",
    }


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else f"HTTP {response.status_code}"


async def _request(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    token: str,
    json: dict[str, Any] | None = None,
) -> httpx.Response:
    """Make an authenticated request and translate failures into client errors."""
    try:
        response = await client.request(method, path, json=json, headers=_get_headers(token))
    except httpx.HTTPError as e:
        logger.warning("%s %s failed: %s", method, path, e)
        raise StoreError(str(e)) from e

    if response.status_code == 401:
        raise AuthenticationError(_error_detail(response), status_code=401)
    if response.status_code == 422:
        raise ValidationError(_error_detail(response))
    if response.is_error:
        raise StoreError(_error_detail(response), status_code=response.status_code)
    return response


def _require_identity(identity: Identity | None, operation: str) -> Identity:
    if identity is None or not identity.user_id:
        raise NotSignedInError(operation)
    return identity


async def fetch_current_user(client: httpx.AsyncClient, token: str) -> dict[str, Any]:
    """Get the user the token belongs to (`id` is the owner identifier)."""
    response = await _request(client, "GET", "/users/me", token)
    return response.json()


async def resolve_identity(
    client: httpx.AsyncClient,
    access_token: str,
    expires_at: datetime | None = None,
) -> Identity:
    """Build an Identity for a freshly issued access token."""
    user = await fetch_current_user(client, access_token)
    return Identity(user_id=str(user["id"]), access_token=access_token, expires_at=expires_at)


async def add_bookmark(
    client: httpx.AsyncClient,
    identity: Identity | None,
    title: str,
    url: str,
) -> BookmarkRecord:
    """
    Create a bookmark for `identity`.

    Title and url are trimmed; empty values are rejected before any request.

    Raises:
        NotSignedInError: If there is no identity.
        ValidationError: If title or url is empty after trimming, or the API rejects them.
        StoreError: On transport failure or any other unsuccessful response.
    """
    identity = _require_identity(identity, "add")
    title, url = title.strip(), url.strip()
    if not title:
        raise ValidationError("Title must not be empty")
    if not url:
        raise ValidationError("Url must not be empty")

    response = await _request(
        client, "POST", "/bookmarks/", identity.access_token, json={"title": title, "url": url},
    )
    return BookmarkRecord.model_validate(response.json())


async def list_bookmarks(
    client: httpx.AsyncClient,
    identity: Identity | None,
) -> list[BookmarkRecord]:
    """
    List the bookmarks of `identity`, newest first.

    Returns an empty list, without contacting the API, when there is no identity.
    Records not owned by `identity` are dropped.
    """
    if identity is None or not identity.user_id:
        return []
    response = await _request(client, "GET", "/bookmarks/", identity.access_token)
    records = [BookmarkRecord.model_validate(item) for item in response.json()]
    return [r for r in records if r.user_id == identity.user_id]


async def remove_bookmark(
    client: httpx.AsyncClient,
    identity: Identity | None,
    bookmark_id: str,
) -> None:
    """
    Delete a bookmark of `identity`. Removing a missing or foreign id is a no-op.

    Raises:
        NotSignedInError: If there is no identity.
        StoreError: On transport failure or any other unsuccessful response.
    """
    identity = _require_identity(identity, "remove")
    await _request(client, "DELETE", f"/bookmarks/{bookmark_id}", identity.access_token)
