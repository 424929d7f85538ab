"""
Process-wide holder of the signed-in identity.

The identity changes only through identity-provider events (sign-in, sign-out,
token refresh). Each event replaces the held identity in one step and then
notifies observers. "No identity" is a normal state: consumers check for it and
suppress identity-dependent work instead of treating it as an error.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from .credentials import CredentialStore
from .records import Identity

logger = logging.getLogger(__name__)


class AuthEvent(StrEnum):
    """Identity-provider events the session reacts to."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


SessionObserver = Callable[[AuthEvent, Identity | None], Awaitable[None] | None]


class SessionContext:
    """Single owner of the current identity, with publish/subscribe for observers."""

    def __init__(self, credential_store: CredentialStore | None = None) -> None:
        self._credential_store = credential_store
        self._identity: Identity | None = None
        self._observers: list[SessionObserver] = []
        self._initialized = False

    @property
    def identity(self) -> Identity | None:
        """The signed-in identity, or None when signed out."""
        return self._identity

    @property
    def is_signed_in(self) -> bool:
        """True when an identity is held."""
        return self._identity is not None

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """
        Register `observer` for identity changes.

        Returns a function that unregisters it.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    async def initialize(self) -> Identity | None:
        """
        Restore the persisted credential, once per process.

        An expired credential is discarded. Observers receive INITIAL_SESSION with
        the restored identity (or None).
        """
        if self._initialized:
            return self._identity
        self._initialized = True

        identity = self._credential_store.load() if self._credential_store else None
        if identity is not None and identity.is_expired():
            logger.info("Discarding expired credential for user %s", identity.user_id)
            self._credential_store.clear()
            identity = None

        self._identity = identity
        await self._notify(AuthEvent.INITIAL_SESSION, identity)
        return identity

    async def handle_auth_event(self, event: AuthEvent, identity: Identity | None = None) -> None:
        """
        Apply an identity-provider event.

        Raises:
            ValueError: If SIGNED_IN or TOKEN_REFRESHED carries no identity, or the
                event is INITIAL_SESSION (only initialize() emits it).
        """
        if event is AuthEvent.INITIAL_SESSION:
            raise ValueError("INITIAL_SESSION is emitted by initialize()")
        if event is AuthEvent.SIGNED_OUT:
            identity = None
        elif identity is None:
            raise ValueError(f"{event} requires an identity")

        self._identity = identity
        if self._credential_store is not None:
            if identity is None:
                self._credential_store.clear()
            else:
                self._credential_store.save(identity)

        logger.info(
            "Session %s (user %s)", event, identity.user_id if identity else None,
        )
        await self._notify(event, identity)

    async def _notify(self, event: AuthEvent, identity: Identity | None) -> None:
        for observer in list(self._observers):
            try:
                result = observer(event, identity)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Session observer failed on %s", event)
