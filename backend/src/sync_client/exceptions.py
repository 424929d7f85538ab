"""Exceptions raised by the sync client."""


class ClientError(Exception):
    """Base class for sync client errors."""

    pass


class ValidationError(ClientError):
    """Input rejected locally or by the API (422); nothing was written."""

    pass


class StoreError(ClientError):
    """Transport failure or any other unsuccessful API response. Never retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(StoreError):
    """The API rejected the access token (401)."""

    pass


class NotSignedInError(ClientError):
    """An operation that needs an identity was attempted while signed out."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Sign in to {operation} bookmarks")
