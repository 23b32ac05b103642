"""Decides between reuse, refresh and interactive login before every launch.

Pattern: Expiry-Driven Session State Machine
---------------------------------------------
The stored credential bundle is in exactly one of three states:

  - ``NO_SESSION``: nothing usable on disk; open the browser, capture the
    redirect, run the token chain from the authorization code.
  - ``VALID``:      ``now < expires_at``: return the stored bundle without
    touching the network.
  - ``EXPIRED``:    ``now >= expires_at``: run the token chain from the stored
    refresh token.  A blank or ``"null"`` refresh token falls back to an
    interactive login.

The store is written once per successful chain and never on failure, so an
``AuthError`` leaves whatever was on disk untouched.
"""

from __future__ import annotations

import enum
import logging
import time
import webbrowser
from collections.abc import Callable

from aurora_launcher.auth.callback import CallbackListener, build_authorize_url
from aurora_launcher.auth.session import CredentialBundle
from aurora_launcher.auth.session_store import SessionStore
from aurora_launcher.auth.token_chain import TokenChainClient
from aurora_launcher.config import AuthSettings

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    NO_SESSION = "no_session"
    VALID = "valid"
    EXPIRED = "expired"


def classify_session(bundle: CredentialBundle | None, now: float) -> SessionState:
    if bundle is None:
        return SessionState.NO_SESSION
    if bundle.is_expired(now):
        return SessionState.EXPIRED
    return SessionState.VALID


def should_refresh(bundle: CredentialBundle) -> bool:
    """True when an expired *bundle* can be renewed without a browser."""
    return bundle.has_usable_refresh_token


class InteractiveLogin:
    """Browser sign-in that yields an authorization code."""

    def __init__(
        self,
        settings: AuthSettings,
        open_url: Callable[[str], bool] = webbrowser.open,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self._settings = settings
        self._open_url = open_url
        self._notify = notify

    def obtain_code(self) -> str:
        with CallbackListener(self._settings.redirect_host, self._settings.redirect_port) as listener:
            url = build_authorize_url(
                self._settings.client_id, listener.redirect_uri, self._settings.authorize_url,
            )
            if self._notify is not None:
                self._notify(url)
            opened = self._settings.open_browser and self._open_url(url)
            if not opened:
                logger.warning("Browser not opened; visit the sign-in URL manually: %s", url)
            return listener.wait(self._settings.login_timeout_seconds)


class SessionManager:
    """Returns a valid ``CredentialBundle``, signing in or refreshing as needed."""

    def __init__(
        self,
        store: SessionStore,
        chain: TokenChainClient,
        login: InteractiveLogin,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._chain = chain
        self._login = login
        self._clock = clock

    def ensure_session(self) -> CredentialBundle:
        bundle = self._store.load()
        state = classify_session(bundle, self._clock())
        logger.info("Session state: %s", state.value)

        if state is SessionState.VALID:
            return bundle
        if state is SessionState.EXPIRED and should_refresh(bundle):
            logger.info("Token expired. Refreshing...")
            return self._persist(self._chain.exchange_refresh_token(bundle.refresh_token))
        if state is SessionState.EXPIRED:
            logger.info("Stored refresh token is unusable; full login required")
        else:
            logger.info("No login found. Starting interactive login...")
        return self.login()

    def login(self) -> CredentialBundle:
        code = self._login.obtain_code()
        return self._persist(self._chain.exchange_code(code))

    def _persist(self, bundle: CredentialBundle) -> CredentialBundle:
        self._store.save(bundle)
        return bundle
