"""Session store: the authenticated identity and its credential token.

The store keeps an in-memory copy of the session and mirrors it to a durable
``SessionStorage`` backend so a restarted process comes back logged in. Any
problem reading the persisted session leaves the store logged out.
"""

import json
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .errors import SessionPersistenceError
from .models import Session
from .session_storage import (
    ACCESS_TOKEN,
    CURRENT_USER,
    REFRESH_TOKEN,
    SESSION_KEYS,
    MemorySessionStorage,
    SessionStorage,
    StorageError,
)


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Authentication lifecycle states."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


SessionListener = Callable[[SessionState, Optional[Session]], None]


class SessionStore:
    """Holds the current session and persists it across restarts."""

    def __init__(self, storage: Optional[SessionStorage] = None, restore: bool = True):
        """Initialize the store.

        Args:
            storage: Durable backend (in-memory if omitted)
            restore: Load a previously persisted session immediately
        """
        self.storage = storage or MemorySessionStorage()
        self.logger = logging.getLogger(__name__)
        # (state, session) replaced as a unit so readers never see a mix
        self._snapshot: Tuple[SessionState, Optional[Session]] = (SessionState.UNAUTHENTICATED, None)
        self._listeners: List[SessionListener] = []

        if restore:
            self.restore()

    @property
    def state(self) -> SessionState:
        return self._snapshot[0]

    def current(self) -> Optional[Session]:
        """Return the current session, or None when logged out."""
        return self._snapshot[1]

    def is_authenticated(self) -> bool:
        return self._snapshot[1] is not None

    def token(self) -> Optional[str]:
        session = self._snapshot[1]
        return session.token if session else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener called with ``(state, session)`` on every change.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Lifecycle

    def restore(self) -> Optional[Session]:
        """Load the persisted session, clearing everything if it is unusable.

        Returns:
            Restored session, or None
        """
        try:
            token = self.storage.get(ACCESS_TOKEN)
            user_json = self.storage.get(CURRENT_USER)
        except StorageError as e:
            self.logger.warning(f"Cannot read persisted session, logging out: {e}")
            self.clear()
            return None

        if not token:
            if user_json is not None:
                self.logger.debug("Discarding persisted user without a token")
                self.clear()
            return None

        try:
            if user_json is None:
                raise ValueError("persisted user is missing")
            session = Session.from_user_payload(token, json.loads(user_json))
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning(f"Persisted session is malformed, logging out: {e}")
            self.clear()
            return None

        self._apply(SessionState.AUTHENTICATED, session)
        self.logger.info(f"Restored session for {session.email}")
        return session

    def begin_authentication(self) -> None:
        """Mark a login or registration as in progress."""
        self._apply(SessionState.AUTHENTICATING, self.current())

    def abort_authentication(self) -> None:
        """Return from AUTHENTICATING after a failed login attempt."""
        if self.state is SessionState.AUTHENTICATING:
            session = self.current()
            state = SessionState.AUTHENTICATED if session else SessionState.UNAUTHENTICATED
            self._apply(state, session)

    def establish(self, session: Session) -> None:
        """Persist and activate a session.

        Durable storage is written first; if any write fails the previous
        durable values are put back and the in-memory session is untouched.

        Raises:
            SessionPersistenceError: If the session cannot be persisted
        """
        try:
            previous = {key: self.storage.get(key) for key in SESSION_KEYS}
        except StorageError as e:
            self.abort_authentication()
            raise SessionPersistenceError("Could not save session", description=str(e)) from e

        values = {
            ACCESS_TOKEN: session.token,
            REFRESH_TOKEN: "",
            CURRENT_USER: json.dumps(session.user_payload()),
        }
        written = []
        try:
            for key, value in values.items():
                written.append(key)
                self.storage.set(key, value)
        except StorageError as e:
            self._rollback(previous, written)
            self.abort_authentication()
            raise SessionPersistenceError("Could not save session", description=str(e)) from e

        self._apply(SessionState.AUTHENTICATED, session)
        self.logger.info(f"Session established for {session.email}")

    def clear(self) -> None:
        """Drop the session from memory and durable storage. Idempotent."""
        for key in SESSION_KEYS:
            try:
                self.storage.delete(key)
            except StorageError as e:
                self.logger.warning(f"Failed to remove {key} from session storage: {e}")

        if self._snapshot != (SessionState.UNAUTHENTICATED, None):
            self._apply(SessionState.UNAUTHENTICATED, None)
            self.logger.info("Session cleared")

    # Internals

    def _rollback(self, previous: Dict[str, Optional[str]], written: List[str]) -> None:
        for key in written:
            try:
                if previous[key] is None:
                    self.storage.delete(key)
                else:
                    self.storage.set(key, previous[key])
            except StorageError as e:
                self.logger.error(f"Failed to restore {key} after a failed session write: {e}")

    def _apply(self, state: SessionState, session: Optional[Session]) -> None:
        if self._snapshot == (state, session):
            return
        self._snapshot = (state, session)
        self.logger.debug(f"Session state -> {state.value}")
        for listener in list(self._listeners):
            try:
                listener(state, session)
            except Exception as e:
                self.logger.error(f"Session listener failed: {e}")
