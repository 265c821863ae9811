"""Session manager: holds, persists and broadcasts the current session."""

from enum import Enum
import json
import logging
import os
from pathlib import Path
from typing import Callable, Optional

from .models import SessionData, User

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    """Kinds of session change."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


SessionCallback = Callable[[SessionEvent, Optional[SessionData]], None]


class Subscription:
    """Handle returned by subscribe(); unsubscribe() detaches the callback."""

    def __init__(self, registry: list["Subscription"], callback: Callable[..., None]) -> None:
        self._registry = registry
        self.callback = callback
        self.active = True
        registry.append(self)

    def unsubscribe(self) -> None:
        if self.active and self in self._registry:
            self._registry.remove(self)
        self.active = False


class AuthManager:
    """Manages authentication state and session persistence."""

    def __init__(self, session_file: Optional[str] = None, persist: bool = True) -> None:
        """
        Initialize the authentication manager.

        Args:
            session_file: Path to store session data. Defaults to ~/.clickcarry_session.json
            persist: Write the session to disk so it survives a restart
        """
        if session_file is None:
            session_file = str(Path.home() / ".clickcarry_session.json")
        self.session_file = session_file
        self.persist = persist
        self._listeners: list[Subscription] = []
        self.session: Optional[SessionData] = self._load_session() if persist else None

    def _load_session(self) -> Optional[SessionData]:
        """Load session data from file if it exists."""
        if os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    data = json.load(f)
                session = SessionData.model_validate(data)
                logger.info(f"Loaded existing session from {self.session_file}")
                return session
            except (json.JSONDecodeError, ValueError) as e:
                # If file is corrupted, start fresh
                logger.warning(f"Could not load session: {e}")
        return None

    def _save_session(self) -> None:
        """Save session data to file."""
        if not self.persist or self.session is None:
            return
        with open(self.session_file, "w") as f:
            f.write(self.session.model_dump_json())
        # Set restrictive permissions on session file
        os.chmod(self.session_file, 0o600)

    def _notify(self, event: SessionEvent) -> None:
        for subscription in list(self._listeners):
            try:
                subscription.callback(event, self.session)
            except Exception as e:
                logger.error(f"Session listener failed on {event.value}: {e}", exc_info=True)

    def save_session(self, session: SessionData, event: SessionEvent = SessionEvent.SIGNED_IN) -> None:
        """
        Store a new session and notify subscribers.

        Args:
            session: Session returned by the auth API
            event: What produced the session
        """
        self.session = session
        self._save_session()
        self._notify(event)

    def clear_session(self) -> None:
        """Clear the current session."""
        had_session = self.session is not None
        self.session = None
        if self.persist and os.path.exists(self.session_file):
            os.remove(self.session_file)
            logger.info("Session cleared")
        if had_session:
            self._notify(SessionEvent.SIGNED_OUT)

    def get_session(self) -> Optional[SessionData]:
        """Get current session data."""
        return self.session

    def current_user(self) -> Optional[User]:
        return self.session.user if self.session else None

    def is_authenticated(self) -> bool:
        """Check if there's an active authenticated session."""
        return self.session is not None

    def subscribe(self, callback: SessionCallback) -> Subscription:
        """Register a callback run on every session change."""
        return Subscription(self._listeners, callback)
