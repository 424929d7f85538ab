"""Shared exceptions for service layer operations."""


class ValidationError(Exception):
    """
    Raised when input is rejected before reaching the store.

    Nothing has been written when this is raised.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class MissingOwnerError(ValidationError):
    """Raised when a mutation is attempted without an owner identifier."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"An owner id is required to {operation} a bookmark")


class StoreError(Exception):
    """
    Raised when the data store fails or rejects an operation.

    Transport failures and row-level security rejections are deliberately not
    distinguished; the message is the store's own. The service layer never retries.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ChannelLimitError(Exception):
    """Raised when every change notification channel is already in use."""

    def __init__(self, max_channels: int) -> None:
        self.max_channels = max_channels
        super().__init__(f"All {max_channels} change notification channels are in use")
