"""Persisted credential for restoring a session across process restarts."""

import logging
import os
from pathlib import Path

import pydantic

from .config import get_credentials_path
from .records import Identity

logger = logging.getLogger(__name__)


class CredentialStore:
    """Stores the signed-in Identity as JSON in a user-only readable file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or get_credentials_path()

    def load(self) -> Identity | None:
        """Return the stored identity, or None if there is none or it is unreadable."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return Identity.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.warning("Ignoring unreadable credential file %s", self.path)
            return None

    def save(self, identity: Identity) -> None:
        """Write `identity`, replacing any previous credential."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(identity.model_dump_json(), encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(self.path)

    def clear(self) -> None:
        """Remove the stored credential, if any."""
        self.path.unlink(missing_ok=True)
