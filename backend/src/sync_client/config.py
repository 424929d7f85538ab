"""Sync client configuration from environment."""

import os
from pathlib import Path


def get_api_base_url() -> str:
    """Get the API base URL from environment."""
    return os.getenv("BOOKMARKS_API_URL", "http://localhost:8000")


def get_default_timeout() -> float:
    """Get the default request timeout."""
    return float(os.getenv("BOOKMARKS_API_TIMEOUT", "30.0"))


def get_credentials_path() -> Path:
    """Get the path of the persisted credential file."""
    default = Path.home() / ".config" / "bookmark-sync" / "credentials.json"
    return Path(os.getenv("BOOKMARKS_CREDENTIALS_PATH", str(default)))
