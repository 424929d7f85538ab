"""FastAPI application entry point."""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.routers import bookmarks, changes, health, users
from core.config import get_settings
from services.change_feed import ChangeFeed, set_change_feed
from services.exceptions import ChannelLimitError, StoreError, ValidationError


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan - startup and shutdown."""
    app_settings = get_settings()

    # Startup: change feed (channels open lazily, one per subscriber)
    change_feed = ChangeFeed(
        app_settings.listen_dsn,
        max_channels=app_settings.max_change_channels,
    )
    set_change_feed(change_feed)

    yield

    # Shutdown: release every open channel
    set_change_feed(None)
    await change_feed.close()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add security headers to response."""
        response = await call_next(request)
        # HSTS: enforce HTTPS for 1 year, including subdomains
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking - API shouldn't be framed
        response.headers["X-Frame-Options"] = "DENY"
        return response


app_settings = get_settings()

app = FastAPI(
    title="Bookmark Sync API",
    description="Personal bookmarks with per-user isolation and a real-time change feed.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ValidationError)
async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
    """Input rejected before reaching the store."""
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(_request: Request, exc: StoreError) -> JSONResponse:
    """Store failure or policy rejection; the caller may retry with a new request."""
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ChannelLimitError)
async def channel_limit_handler(_request: Request, exc: ChannelLimitError) -> JSONResponse:
    """No change channel available."""
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc)},
        headers={"Retry-After": "30"},
    )


# Security headers middleware (runs after CORS, adds headers to responses)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(users.router)
app.include_router(changes.router)
app.include_router(bookmarks.router)
