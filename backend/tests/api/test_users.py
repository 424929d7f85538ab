"""Tests for user endpoints."""
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import DEV_AUTH0_ID
from models.bookmark import Bookmark
from models.user import User


async def test_get_me_returns_dev_user(client: AsyncClient) -> None:
    """In dev mode /users/me is the development user."""
    response = await client.get("/users/me")

    assert response.status_code == 200
    data = response.json()
    assert data["auth0_id"] == DEV_AUTH0_ID
    assert data["email"] == "dev@localhost"
    assert "id" in data


async def test_get_me_is_stable(client: AsyncClient) -> None:
    """Repeated requests resolve to the same owner id."""
    first = (await client.get("/users/me")).json()
    second = (await client.get("/users/me")).json()
    assert first["id"] == second["id"]


async def test_delete_me_cascades_to_bookmarks(
    client: AsyncClient,
    db_session: AsyncSession,
) -> None:
    """Deleting the account removes every bookmark it owned."""
    await client.post("/bookmarks/", json={"title": "One", "url": "U1"})
    await client.post("/bookmarks/", json={"title": "Two", "url": "U2"})
    me = (await client.get("/users/me")).json()

    response = await client.delete("/users/me")
    assert response.status_code == 204

    users = await db_session.scalar(
        select(func.count()).select_from(User).where(User.auth0_id == DEV_AUTH0_ID),
    )
    assert users == 0
    bookmarks = await db_session.scalar(
        select(func.count()).select_from(Bookmark).where(Bookmark.user_id == me["id"]),
    )
    assert bookmarks == 0
