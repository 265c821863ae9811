"""Tracks the signed-in identity for the rest of the storefront."""

import logging
from typing import Callable, Optional

from .auth import SessionEvent, Subscription
from .exceptions import StorefrontError
from .models import SessionData, User
from .store_client import RemoteStoreClient

logger = logging.getLogger(__name__)

UserCallback = Callable[[Optional[User]], None]


class AuthStateObserver:
    """
    Exposes the (user, is_authenticated) pair.

    The current session is queried once by start(); after that the pair only
    follows session change notifications from the store.
    """

    def __init__(self, store: RemoteStoreClient) -> None:
        self.store = store
        self.user: Optional[User] = None
        self._observers: list[Subscription] = []
        self._store_subscription: Optional[Subscription] = None
        self._changed_since_start = False
        self._closed = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def start(self) -> None:
        """Subscribe to session changes and load the current session once."""
        self._store_subscription = self.store.auth.on_session_change(self._on_session_change)
        self._changed_since_start = False

        try:
            session = await self.store.auth.get_current_session()
        except StorefrontError as e:
            logger.warning(f"Initial session lookup failed, treating as signed out: {e}")
            session = None

        if self._closed:
            return
        if self._changed_since_start:
            # a notification arrived while the lookup was in flight and is newer
            logger.debug("Ignoring initial session result superseded by a notification")
            return
        self._set_user(session.user if session else None)

    def _on_session_change(self, event: SessionEvent, session: Optional[SessionData]) -> None:
        if self._closed:
            return
        logger.info(f"Auth state changed: {event.value}")
        self._changed_since_start = True
        self._set_user(session.user if session else None)

    def _set_user(self, user: Optional[User]) -> None:
        self.user = user
        for subscription in list(self._observers):
            try:
                subscription.callback(user)
            except Exception as e:
                logger.error(f"Auth state observer failed: {e}", exc_info=True)

    def subscribe(self, callback: UserCallback) -> Subscription:
        """Call callback(user) on every identity update."""
        return Subscription(self._observers, callback)

    def close(self) -> None:
        """Unregister from the store; later notifications are ignored."""
        self._closed = True
        if self._store_subscription is not None:
            self._store_subscription.unsubscribe()
            self._store_subscription = None
        self._observers.clear()
