"""
Tests for the auth module: user provisioning, dev mode bypass and JWT error mapping.

Note: Imports from core.auth are done inside test methods to avoid triggering
Settings validation during test collection (before DATABASE_URL is set by fixtures).
"""
from unittest.mock import MagicMock, patch

import httpx
import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession, async_sessionmaker

from core.config import Settings
from models.user import User


def _auth0_settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="postgresql://test",
        VITE_AUTH0_DOMAIN="test.auth0.com",
        VITE_AUTH0_AUDIENCE="https://test-api",
        VITE_DEV_MODE="false",
    )


class TestGetOrCreateUser:
    """Tests for get_or_create_user."""

    async def test__get_or_create_user__creates_user(self, db_session: AsyncSession) -> None:
        """A new auth0 id creates a user with a UUID id."""
        from core.auth import get_or_create_user  # noqa: PLC0415

        user = await get_or_create_user(db_session, auth0_id="auth0|new", email="new@test.com")

        assert user.id is not None
        assert user.auth0_id == "auth0|new"
        assert user.email == "new@test.com"

    async def test__get_or_create_user__returns_existing_user(
        self,
        db_session: AsyncSession,
    ) -> None:
        """The same auth0 id always resolves to the same user."""
        from core.auth import get_or_create_user  # noqa: PLC0415

        first = await get_or_create_user(db_session, auth0_id="auth0|same")
        second = await get_or_create_user(db_session, auth0_id="auth0|same")

        assert second.id == first.id
        count = await db_session.scalar(
            select(func.count()).select_from(User).where(User.auth0_id == "auth0|same"),
        )
        assert count == 1

    async def test__get_or_create_user__updates_changed_email(
        self,
        db_session: AsyncSession,
    ) -> None:
        """A changed email claim is written to the existing user."""
        from core.auth import get_or_create_user  # noqa: PLC0415

        await get_or_create_user(db_session, auth0_id="auth0|email", email="old@test.com")
        user = await get_or_create_user(db_session, auth0_id="auth0|email", email="new@test.com")

        assert user.email == "new@test.com"

    async def test__get_or_create_user__null_email_does_not_overwrite_existing(
        self,
        db_session: AsyncSession,
    ) -> None:
        """Passing email=None does not overwrite existing email."""
        from core.auth import get_or_create_user  # noqa: PLC0415

        await get_or_create_user(db_session, auth0_id="auth0|keep", email="keep@test.com")
        user = await get_or_create_user(db_session, auth0_id="auth0|keep", email=None)

        assert user.email == "keep@test.com"


class TestGetCurrentUser:
    """Tests for the get_current_user dependency."""

    async def test__get_current_user__dev_mode_returns_dev_user(
        self,
        db_session: AsyncSession,
    ) -> None:
        """DEV_MODE bypasses credentials and returns the development user."""
        from core.auth import DEV_AUTH0_ID, get_current_user  # noqa: PLC0415

        settings = Settings(
            _env_file=None,
            database_url="postgresql://localhost:5432/test",
            VITE_DEV_MODE="true",
        )

        user = await get_current_user(credentials=None, db=db_session, settings=settings)

        assert user.auth0_id == DEV_AUTH0_ID

    async def test__get_current_user__missing_credentials_returns_401(
        self,
        db_session: AsyncSession,
    ) -> None:
        """Without a bearer token, the request is rejected."""
        from core.auth import get_current_user  # noqa: PLC0415

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(credentials=None, db=db_session, settings=_auth0_settings())

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Not authenticated"

    async def test__get_current_user__valid_token_provisions_user(
        self,
        db_session: AsyncSession,
    ) -> None:
        """A valid token resolves to the user named by its sub claim."""
        from core.auth import get_current_user  # noqa: PLC0415

        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="token")
        with patch(
            "core.auth.decode_jwt",
            return_value={"sub": "auth0|jwt-user", "email": "jwt@test.com"},
        ):
            user = await get_current_user(
                credentials=credentials, db=db_session, settings=_auth0_settings(),
            )

        assert user.auth0_id == "auth0|jwt-user"
        assert user.email == "jwt@test.com"

    async def test__get_current_user__missing_sub_claim_returns_401(
        self,
        db_session: AsyncSession,
    ) -> None:
        """A token without a sub claim cannot identify an owner."""
        from core.auth import get_current_user  # noqa: PLC0415

        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="token")
        with (
            patch("core.auth.decode_jwt", return_value={"email": "x@test.com"}),
            pytest.raises(HTTPException) as exc_info,
        ):
            await get_current_user(
                credentials=credentials, db=db_session, settings=_auth0_settings(),
            )

        assert exc_info.value.status_code == 401
        assert "sub" in exc_info.value.detail

    async def test__get_stream_user__user_committed_in_own_session(
        self,
        db_connection: AsyncConnection,
    ) -> None:
        """The streaming dependency provisions and commits the user before returning."""
        from core.auth import DEV_AUTH0_ID, get_stream_user  # noqa: PLC0415

        session_factory = async_sessionmaker(
            bind=db_connection,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )
        settings = Settings(
            _env_file=None,
            database_url="postgresql://localhost:5432/test",
            VITE_DEV_MODE="true",
        )

        user = await get_stream_user(
            credentials=None, session_factory=session_factory, settings=settings,
        )

        assert user.auth0_id == DEV_AUTH0_ID
        assert db_connection.in_nested_transaction() is False
        count = await db_connection.scalar(
            select(func.count()).select_from(User).where(User.auth0_id == DEV_AUTH0_ID),
        )
        assert count == 1

    async def test__get_stream_user__missing_credentials_returns_401(
        self,
        db_connection: AsyncConnection,
    ) -> None:
        from core.auth import get_stream_user  # noqa: PLC0415

        session_factory = async_sessionmaker(
            bind=db_connection, join_transaction_mode="create_savepoint",
        )
        with pytest.raises(HTTPException) as exc_info:
            await get_stream_user(
                credentials=None, session_factory=session_factory, settings=_auth0_settings(),
            )

        assert exc_info.value.status_code == 401
        assert db_connection.in_nested_transaction() is False


class TestDecodeJwt:
    """Tests for mapping PyJWT and JWKS failures to HTTP errors."""

    @pytest.mark.parametrize(
        ("error", "detail"),
        [
            (jwt.ExpiredSignatureError("expired"), "Token has expired"),
            (jwt.InvalidAudienceError("aud"), "Invalid audience"),
            (jwt.InvalidIssuerError("iss"), "Invalid issuer"),
            (jwt.DecodeError("garbage"), "Invalid token"),
        ],
    )
    def test__decode_jwt__jwt_errors_return_401(
        self,
        error: jwt.PyJWTError,
        detail: str,
    ) -> None:
        """Each PyJWT failure is a 401 with its own message."""
        from core.auth import decode_jwt  # noqa: PLC0415

        jwks_client = MagicMock()
        jwks_client.get_signing_key_from_jwt.side_effect = error
        with (
            patch("core.auth.get_jwks_client", return_value=jwks_client),
            pytest.raises(HTTPException) as exc_info,
        ):
            decode_jwt("token", _auth0_settings())

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == detail

    def test__decode_jwt__jwks_fetch_failure_returns_503(self) -> None:
        """Failing to reach Auth0 for signing keys is a 503, not a 401."""
        from core.auth import decode_jwt  # noqa: PLC0415

        jwks_client = MagicMock()
        jwks_client.get_signing_key_from_jwt.side_effect = httpx.ConnectError("down")
        with (
            patch("core.auth.get_jwks_client", return_value=jwks_client),
            pytest.raises(HTTPException) as exc_info,
        ):
            decode_jwt("token", _auth0_settings())

        assert exc_info.value.status_code == 503

    def test__get_jwks_client__cached_per_url(self) -> None:
        """The JWKS client is reused for the same Auth0 domain."""
        from core.auth import get_jwks_client  # noqa: PLC0415

        settings = _auth0_settings()
        assert get_jwks_client(settings) is get_jwks_client(settings)
