"""
Resolving the caller of a request to a User.

Bearer tokens are Auth0 access tokens, verified against the tenant's JWKS. In
DEV_MODE every request acts as a single local user. The user row is created on
first sight of an Auth0 subject; its id is the owner id of the user's bookmarks.
"""
import logging
from functools import lru_cache

import httpx
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from db.session import get_async_session, get_session_factory
from models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

DEV_AUTH0_ID = "dev|local-development-user"
DEV_EMAIL = "dev@localhost"

# Checked in order; the first match names the rejection
_REJECTED_TOKEN_DETAILS: list[tuple[type[jwt.PyJWTError], str]] = [
    (jwt.ExpiredSignatureError, "Token has expired"),
    (jwt.InvalidAudienceError, "Invalid audience"),
    (jwt.InvalidIssuerError, "Invalid issuer"),
]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@lru_cache
def _jwks_client_for(jwks_url: str) -> PyJWKClient:
    # Signing keys are cached for an hour
    return PyJWKClient(jwks_url, cache_jwk_set=True, lifespan=3600)


def get_jwks_client(settings: Settings) -> PyJWKClient:
    """JWKS client for the configured Auth0 tenant, shared across requests."""
    return _jwks_client_for(settings.auth0_jwks_url)


def decode_jwt(token: str, settings: Settings) -> dict:
    """
    Verify an Auth0 access token and return its claims.

    Raises:
        HTTPException: 401 for any rejected token, 503 if the signing keys
            cannot be fetched.
    """
    try:
        signing_key = get_jwks_client(settings).get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.auth0_audience,
            issuer=settings.auth0_issuer,
        )
    except jwt.PyJWTError as e:
        for error_type, detail in _REJECTED_TOKEN_DETAILS:
            if isinstance(e, error_type):
                raise _unauthorized(detail) from e
        logger.warning("Rejected bearer token: %s", e)
        raise _unauthorized("Invalid token") from e
    except httpx.HTTPError as e:
        logger.error("Fetching signing keys from %s failed: %s", settings.auth0_jwks_url, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not validate credentials",
        ) from e


async def get_or_create_user(
    db: AsyncSession,
    auth0_id: str,
    email: str | None = None,
) -> User:
    """
    Return the user for an Auth0 subject, creating it on first sight.

    Concurrent first requests for one subject race on the unique auth0_id; the
    loser's savepoint is rolled back and it reads the winner's row. A changed
    email claim is written back. Flushes only; the caller's session commits.
    """
    user = await db.scalar(select(User).where(User.auth0_id == auth0_id))
    if user is None:
        try:
            async with db.begin_nested():
                user = User(auth0_id=auth0_id, email=email)
                db.add(user)
                await db.flush()
        except IntegrityError:
            user = await db.scalar(select(User).where(User.auth0_id == auth0_id))
            if user is None:
                raise

    if email and user.email != email:
        user.email = email
        await db.flush()
    return user


async def resolve_user(
    credentials: HTTPAuthorizationCredentials | None,
    db: AsyncSession,
    settings: Settings,
) -> User:
    """
    Map the request's bearer credentials to a User, provisioning it if needed.

    Raises:
        HTTPException: 401 without credentials or without a subject claim.
    """
    if settings.dev_mode:
        return await get_or_create_user(db, auth0_id=DEV_AUTH0_ID, email=DEV_EMAIL)
    if credentials is None:
        raise _unauthorized("Not authenticated")

    claims = decode_jwt(credentials.credentials, settings)
    subject = claims.get("sub")
    if not subject:
        raise _unauthorized("Invalid token: missing sub claim")
    return await get_or_create_user(db, auth0_id=subject, email=claims.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> User:
    """Dependency: the caller, resolved in the request's session."""
    return await resolve_user(credentials, db, settings)


async def get_stream_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> User:
    """
    Dependency for long-lived responses: the caller, resolved in its own session.

    The session is committed and closed before the handler runs, so a streaming
    response holds no pooled connection, transaction or row lock while it is open.
    """
    async with session_factory() as db:
        user = await resolve_user(credentials, db, settings)
        await db.commit()
    return user
