"""Coordinator for one in-flight authorization attempt.

:class:`AuthCoordinator` owns at most one :class:`PendingAuthSession` and
bridges the asynchronous browser redirect back to the caller. Two event
sources race to finish a session: the redirect hand-off
(:meth:`AuthCoordinator.handle_callback`) and the timeout timer. A third,
:meth:`AuthCoordinator.cancel`, lets a host abort explicitly. Whichever
wins detaches the session under the lock; every later writer is a no-op.
The winner stops the listener and settles the session's future exactly
once.

State machine::

    IDLE --begin()--> AWAITING_REDIRECT --valid code--> RESOLVING --> IDLE
                           |                                |
                           +-- timeout / CSRF / denied / ---+--> IDLE
                               cancel / exchange failure

Example::

    coordinator = AuthCoordinator(settings, TokenStore.from_settings(settings))
    record = coordinator.authenticate()   # blocks until the redirect lands
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlsplit

from spotauth.auth.authorize import build_authorize_url, open_in_browser
from spotauth.auth.exchanger import TokenExchanger
from spotauth.auth.listener import RedirectListener
from spotauth.auth.pkce import generate_pkce_pair
from spotauth.auth.state import generate_state, verify_state
from spotauth.auth.store import TokenStore
from spotauth.exceptions import (
    AuthCancelledError,
    AuthInProgressError,
    AuthTimeoutError,
    CsrfMismatchError,
    ProviderDeniedError,
)
from spotauth.models import AuthSettings, CallbackResult, TokenRecord, utcnow

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    RESOLVING = "resolving"


@dataclass
class PendingAuthSession:
    """One authorization attempt, created by :meth:`AuthCoordinator.begin`."""

    code_verifier: str = field(repr=False)
    state: str = field(repr=False)
    authorize_url: str = field(repr=False)
    redirect_uri: str
    listener: RedirectListener = field(repr=False)
    created_at: datetime = field(default_factory=utcnow)
    browser_opened: bool = False
    future: "Future[TokenRecord]" = field(default_factory=Future, repr=False)
    timer: Optional[threading.Timer] = field(default=None, repr=False)

    def wait(self, timeout: Optional[float] = None) -> TokenRecord:
        """Block until the attempt resolves and return the stored record.

        Raises:
            SpotauthError: The error the attempt was rejected with.
            concurrent.futures.TimeoutError: If *timeout* elapses first.
        """
        return self.future.result(timeout)


class AuthCoordinator:
    """Runs PKCE logins and tracks the pending attempt.

    Args:
        settings: Effective auth settings.
        token_store: Receives the tokens of a successful login.
        exchanger: Token endpoint client; built from *settings* if omitted.
        listener_factory: Builds the redirect listener (keyword arguments
            ``port``, ``callback_path``, ``on_callback``, ``handoff_delay``).
        browser: Opens a URL and reports whether it succeeded.
    """

    def __init__(
        self,
        settings: AuthSettings,
        token_store: TokenStore,
        exchanger: Optional[TokenExchanger] = None,
        listener_factory: Callable[..., RedirectListener] = RedirectListener,
        browser: Callable[[str], bool] = open_in_browser,
    ) -> None:
        self._settings = settings
        self._token_store = token_store
        self._exchanger = exchanger or TokenExchanger.from_settings(settings)
        self._listener_factory = listener_factory
        self._browser = browser
        self._lock = threading.Lock()
        self._state = AuthState.IDLE
        self._pending: Optional[PendingAuthSession] = None
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def state(self) -> AuthState:
        with self._lock:
            return self._state

    @property
    def pending(self) -> Optional[PendingAuthSession]:
        with self._lock:
            return self._pending

    def add_listener(self, callback: Callable[[bool], None]) -> None:
        """Register *callback* for auth-state changes (True: logged in, False: logged out)."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Starting an attempt
    # ------------------------------------------------------------------

    def begin(self) -> PendingAuthSession:
        """Start an attempt: listener up, URL opened, timeout armed.

        Returns immediately; call :meth:`PendingAuthSession.wait` for the
        outcome. Check ``browser_opened`` to decide whether to show the
        URL for manual opening.

        If the browser launcher raises, the attempt is settled with that
        error.

        Raises:
            AuthInProgressError: If an attempt is already pending.
            PortInUseError: If the callback port is occupied. The
                coordinator stays idle.
            ListenerError: For other listener start failures.
        """
        with self._lock:
            if self._pending is not None:
                raise AuthInProgressError()

            verifier, challenge = generate_pkce_pair()
            state = generate_state()
            listener = self._listener_factory(
                port=self._settings.port,
                callback_path=self._settings.callback_path,
                on_callback=self.handle_callback,
                handoff_delay=self._settings.handoff_delay_seconds,
            )
            listener.start()

            redirect_uri = listener.redirect_uri
            url = build_authorize_url(
                self._settings.authorize_url,
                self._exchanger.client_id,
                redirect_uri,
                self._settings.scopes,
                challenge,
                state,
            )
            session = PendingAuthSession(
                code_verifier=verifier,
                state=state,
                authorize_url=url,
                redirect_uri=redirect_uri,
                listener=listener,
            )
            timer = threading.Timer(
                self._settings.timeout_seconds, self._on_timeout, args=(session,)
            )
            timer.daemon = True
            session.timer = timer
            self._pending = session
            self._state = AuthState.AWAITING_REDIRECT
            timer.start()

        logger.info("Waiting for authorization redirect on %s", redirect_uri)
        try:
            session.browser_opened = self._browser(url)
        except Exception as exc:
            logger.warning("Browser launch failed: %s", exc)
            self._finish(session, error=exc)
        return session

    def authenticate(self) -> TokenRecord:
        """Run a full login and block until it succeeds or fails."""
        return self.begin().wait()

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def handle_callback(self, result: CallbackResult) -> None:
        """Process a redirect hand-off.

        Ignored unless an attempt is awaiting its redirect, so a duplicate
        or late hand-off never triggers a second exchange.
        """
        with self._lock:
            session = self._pending
            if session is None or self._state is not AuthState.AWAITING_REDIRECT:
                logger.debug("Ignoring authorization callback; no attempt is awaiting one")
                return
            if not verify_state(result.state, session.state):
                error: Optional[Exception] = CsrfMismatchError()
            elif result.error is not None:
                error = ProviderDeniedError(result.error, result.error_description)
            else:
                error = None
                self._state = AuthState.RESOLVING

        if error is not None:
            logger.warning("Authorization callback rejected: %s", error)
            self._finish(session, error=error)
            return

        assert result.code is not None
        try:
            record = self._exchanger.exchange_code(
                result.code, session.code_verifier, redirect_uri=session.redirect_uri
            )
        except Exception as exc:
            logger.warning("Authorization failed during token exchange: %s", exc)
            self._finish(session, error=exc)
            return

        # Tokens are stored only for an attempt that is still pending.
        if not self._detach(session):
            logger.info("Discarding tokens for an attempt cancelled during the exchange")
            return
        try:
            self._token_store.save(record)
        except Exception as exc:
            logger.warning("Could not store tokens: %s", exc)
            self._settle(session, error=exc)
            return

        self._settle(session, result=record)
        logger.info("Authorization complete")
        self._notify(True)

    def handle_callback_uri(self, uri: str) -> None:
        """Process a hand-off delivered as a URI (``...?code=..&state=..``).

        The URI is untrusted input; it goes through the same state check
        as a direct callback. A URI with neither ``code`` nor ``error`` is
        ignored.
        """
        try:
            result = CallbackResult.from_query(urlsplit(uri).query)
        except ValueError:
            logger.warning("Ignoring authorization hand-off without code or error")
            return
        self.handle_callback(result)

    def cancel(self) -> bool:
        """Reject the pending attempt with :class:`AuthCancelledError`.

        Returns:
            ``True`` if an attempt was cancelled.
        """
        session = self.pending
        if session is None:
            return False
        return self._finish(session, error=AuthCancelledError())

    def logout(self) -> None:
        """Forget stored tokens and notify listeners."""
        self._token_store.clear()
        self._notify(False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_timeout(self, session: PendingAuthSession) -> None:
        timeout = self._settings.timeout_seconds
        if self._finish(session, error=AuthTimeoutError(timeout), only_if_awaiting=True):
            logger.warning("No authorization redirect within %g seconds", timeout)

    def _finish(
        self,
        session: PendingAuthSession,
        result: Optional[TokenRecord] = None,
        error: Optional[BaseException] = None,
        only_if_awaiting: bool = False,
    ) -> bool:
        """Detach *session* and settle it. Returns False if already settled."""
        if not self._detach(session, only_if_awaiting):
            return False
        self._settle(session, result, error)
        return True

    def _detach(self, session: PendingAuthSession, only_if_awaiting: bool = False) -> bool:
        with self._lock:
            if self._pending is not session:
                return False
            if only_if_awaiting and self._state is not AuthState.AWAITING_REDIRECT:
                return False
            self._pending = None
            self._state = AuthState.IDLE
        return True

    def _settle(
        self,
        session: PendingAuthSession,
        result: Optional[TokenRecord] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if session.timer is not None:
            session.timer.cancel()
        session.listener.stop()
        if error is not None:
            session.future.set_exception(error)
        else:
            session.future.set_result(result)

    def _notify(self, authenticated: bool) -> None:
        for callback in list(self._listeners):
            callback(authenticated)
