from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from .backend import AuthError, BackendError, OrdersBackend

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], None]


class AuthSession:
    """Signed-in user for one dashboard session.

    Session changes pushed by the auth client (token refresh, sign out in
    another tab) update `user`/`session` and are forwarded to listeners.
    """

    def __init__(self, backend: OrdersBackend):
        self.backend = backend
        self.session: Any = None
        self.user: Any = None
        self._listeners: List[Listener] = []
        self._subscription: Any = None

    @property
    def user_id(self) -> Optional[str]:
        uid = getattr(self.user, "id", None)
        return str(uid) if uid else None

    @property
    def signed_in(self) -> bool:
        return self.user is not None

    def _apply(self, session: Any) -> None:
        self.session = session
        self.user = getattr(session, "user", None) if session is not None else None

    def start(self) -> None:
        try:
            self._apply(self.backend.get_session())
        except BackendError as exc:
            logger.error("Could not read the current session: %s", exc.message)
        if self._subscription is None:
            self._subscription = self.backend.on_auth_state_change(self._on_change)

    def _on_change(self, event: str, session: Any) -> None:
        logger.debug("Auth state change: %s", event)
        self._apply(session)
        for listener in list(self._listeners):
            listener(event, session)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, email: str, password: str) -> Optional[str]:
        """Returns None on success, else the message to show on the form."""
        email = (email or "").strip()
        if not email or not password:
            return "Inserisci email e password."
        try:
            response = self.backend.sign_in(email, password)
        except AuthError as exc:
            logger.info("Sign-in rejected for %s: %s", email, exc.message)
            return exc.message
        self.session = getattr(response, "session", None)
        self.user = getattr(response, "user", None)
        logger.info("Signed in %s", email)
        return None

    def sign_out(self) -> None:
        try:
            self.backend.sign_out()
        except BackendError as exc:
            logger.error("Error during sign-out: %s", exc.message)
        self._apply(None)

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()
