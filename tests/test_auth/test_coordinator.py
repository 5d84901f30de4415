"""Tests for the login coordinator: full flow, CSRF, races, timeout, cancel."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from http.client import HTTPConnection
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import pytest
from pydantic import SecretStr

from spotauth.auth.coordinator import AuthCoordinator, AuthState
from spotauth.auth.exchanger import TokenExchanger
from spotauth.auth.listener import RedirectListener
from spotauth.auth.pkce import derive_challenge
from spotauth.auth.store import MemorySecretStore, TokenStore
from spotauth.exceptions import (
    AuthCancelledError,
    AuthInProgressError,
    AuthTimeoutError,
    CsrfMismatchError,
    ExchangeFailedError,
    PortInUseError,
    ProviderDeniedError,
)
from spotauth.models import AuthSettings, CallbackResult, TokenRecord

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record() -> TokenRecord:
    return TokenRecord(
        access_token=SecretStr("AT"),
        refresh_token=SecretStr("RT"),
        expires_at=NOW + timedelta(hours=1),
    )


def _fake_exchanger(delay: float = 0.0) -> MagicMock:
    exchanger = MagicMock(spec=TokenExchanger)
    exchanger.client_id = "test-client-id"

    def exchange(code: str, verifier: str, redirect_uri: str | None = None) -> TokenRecord:
        if delay:
            time.sleep(delay)
        return _record()

    exchanger.exchange_code.side_effect = exchange
    return exchanger


class _Browser:
    """Stands in for the system browser; records the opened URL."""

    def __init__(self, opens: bool = True) -> None:
        self.urls: list[str] = []
        self._opens = opens

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        return self._opens


def _visit(redirect_uri: str, **params: str) -> int:
    """Simulate the provider redirecting the browser to *redirect_uri*."""
    parts = urlsplit(redirect_uri)
    conn = HTTPConnection(parts.hostname, parts.port, timeout=5)
    try:
        conn.request("GET", f"{parts.path}?{urlencode(params)}")
        response = conn.getresponse()
        response.read()
        return response.status
    finally:
        conn.close()


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


@pytest.fixture()
def store() -> TokenStore:
    return TokenStore(MemorySecretStore(), expiry_buffer_seconds=300, clock=lambda: NOW)


@pytest.fixture()
def browser() -> _Browser:
    return _Browser()


@pytest.fixture()
def make_coordinator(settings: AuthSettings, store: TokenStore, browser: _Browser):
    created: list[AuthCoordinator] = []

    def factory(**overrides: object) -> AuthCoordinator:
        kwargs: dict[str, object] = {"exchanger": _fake_exchanger(), "browser": browser}
        custom_settings = overrides.pop("settings", settings)
        kwargs.update(overrides)
        coordinator = AuthCoordinator(custom_settings, store, **kwargs)  # type: ignore[arg-type]
        created.append(coordinator)
        return coordinator

    yield factory
    for coordinator in created:
        coordinator.cancel()


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestLoginFlow:
    def test_end_to_end_with_token_endpoint(
        self, settings: AuthSettings, store: TokenStore, browser: _Browser
    ) -> None:
        response = MagicMock(spec=httpx.Response)
        response.status_code = 200
        response.json.return_value = {
            "access_token": "AT",
            "refresh_token": "RT",
            "expires_in": 3600,
        }
        response.raise_for_status.return_value = None

        coordinator = AuthCoordinator(settings, store, browser=browser)
        events: list[bool] = []
        coordinator.add_listener(events.append)

        with patch("spotauth.auth.exchanger.httpx.post", return_value=response) as post:
            session = coordinator.begin()
            assert coordinator.state is AuthState.AWAITING_REDIRECT
            assert browser.urls == [session.authorize_url]

            params = _query(session.authorize_url)
            assert session.authorize_url.startswith("https://accounts.spotify.com/authorize?")
            assert params["client_id"] == "test-client-id"
            assert params["response_type"] == "code"
            assert params["redirect_uri"] == f"http://127.0.0.1:{settings.port}/callback"
            assert params["code_challenge_method"] == "S256"
            assert len(params["code_challenge"]) == 43
            assert params["scope"] == " ".join(settings.scopes)

            assert _visit(session.redirect_uri, code="AUTH_CODE", state=params["state"]) == 200
            record = session.wait(timeout=5)

        assert record.access_token.get_secret_value() == "AT"
        sent = post.call_args.kwargs["data"]
        assert sent["code"] == "AUTH_CODE"
        assert sent["redirect_uri"] == params["redirect_uri"]
        assert derive_challenge(sent["code_verifier"]) == params["code_challenge"]

        loaded = store.load()
        assert loaded is not None
        assert loaded.access_token.get_secret_value() == "AT"
        assert coordinator.state is AuthState.IDLE
        assert coordinator.pending is None
        assert session.listener.is_running is False
        assert events == [True]

    def test_authenticate_blocks_until_redirect(self, make_coordinator, browser: _Browser) -> None:
        coordinator = make_coordinator()

        def follow_redirect() -> None:
            while not browser.urls:
                time.sleep(0.01)
            params = _query(browser.urls[0])
            _visit(params["redirect_uri"], code="C", state=params["state"])

        thread = threading.Thread(target=follow_redirect, daemon=True)
        thread.start()
        record = coordinator.authenticate()
        thread.join(timeout=5)
        assert record.access_token.get_secret_value() == "AT"

    def test_browser_failure_still_waits(self, make_coordinator) -> None:
        coordinator = make_coordinator(browser=_Browser(opens=False))
        session = coordinator.begin()
        assert session.browser_opened is False
        assert coordinator.state is AuthState.AWAITING_REDIRECT
        assert session.listener.is_running

    def test_browser_launcher_error_settles_attempt(self, make_coordinator) -> None:
        def broken_browser(url: str) -> bool:
            raise RuntimeError("no display")

        coordinator = make_coordinator(browser=broken_browser)
        session = coordinator.begin()

        with pytest.raises(RuntimeError, match="no display"):
            session.wait(timeout=5)
        assert session.listener.is_running is False
        assert coordinator.state is AuthState.IDLE
        assert coordinator.pending is None

    def test_login_replaces_stored_record(self, make_coordinator, store: TokenStore) -> None:
        store.save(
            TokenRecord(
                access_token=SecretStr("OLD_AT"),
                refresh_token=SecretStr("OLD_RT"),
                expires_at=NOW - timedelta(hours=1),
            )
        )
        exchanger = MagicMock(spec=TokenExchanger)
        exchanger.client_id = "test-client-id"
        exchanger.exchange_code.return_value = TokenRecord(
            access_token=SecretStr("NEW_AT"),
            refresh_token=None,
            expires_at=NOW + timedelta(hours=1),
        )
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()

        coordinator.handle_callback(CallbackResult(code="C", state=session.state))
        session.wait(timeout=5)

        record = store.load()
        assert record is not None
        assert record.access_token.get_secret_value() == "NEW_AT"
        assert record.refresh_token is None
        assert record.expires_at == NOW + timedelta(hours=1)

    def test_fresh_secrets_per_attempt(self, make_coordinator) -> None:
        coordinator = make_coordinator()
        first = coordinator.begin()
        coordinator.cancel()
        second = coordinator.begin()
        assert first.state != second.state
        assert first.code_verifier != second.code_verifier

    def test_session_repr_hides_secrets(self, make_coordinator) -> None:
        session = make_coordinator().begin()
        text = repr(session)
        assert session.code_verifier not in text
        assert session.state not in text


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class TestRejections:
    def test_csrf_mismatch_never_exchanges(self, make_coordinator, store: TokenStore) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()

        _visit(session.redirect_uri, code="C", state="forged")
        with pytest.raises(CsrfMismatchError):
            session.wait(timeout=5)

        exchanger.exchange_code.assert_not_called()
        assert store.load() is None
        assert session.listener.is_running is False
        assert coordinator.state is AuthState.IDLE

    def test_missing_state_is_csrf(self, make_coordinator) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()

        coordinator.handle_callback(CallbackResult(code="C"))
        with pytest.raises(CsrfMismatchError):
            session.wait(timeout=5)
        exchanger.exchange_code.assert_not_called()

    def test_provider_denied(self, make_coordinator) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()

        _visit(session.redirect_uri, error="access_denied", state=session.state)
        with pytest.raises(ProviderDeniedError) as exc_info:
            session.wait(timeout=5)

        assert exc_info.value.error_code == "access_denied"
        exchanger.exchange_code.assert_not_called()
        assert session.listener.is_running is False

    def test_exchange_failure_propagates(self, make_coordinator, store: TokenStore) -> None:
        exchanger = _fake_exchanger()
        exchanger.exchange_code.side_effect = ExchangeFailedError(
            "Token exchange failed: status 400 (invalid_grant)", status_code=400, body="{}"
        )
        events: list[bool] = []
        coordinator = make_coordinator(exchanger=exchanger)
        coordinator.add_listener(events.append)
        session = coordinator.begin()

        coordinator.handle_callback(CallbackResult(code="C", state=session.state))
        with pytest.raises(ExchangeFailedError):
            session.wait(timeout=5)

        assert store.load() is None
        assert events == []
        assert coordinator.state is AuthState.IDLE

    def test_concurrent_begin_rejected(self, make_coordinator) -> None:
        coordinator = make_coordinator()
        coordinator.begin()
        with pytest.raises(AuthInProgressError):
            coordinator.begin()

    def test_port_in_use_leaves_coordinator_idle(
        self, make_coordinator, settings: AuthSettings
    ) -> None:
        blocker = RedirectListener(port=settings.port)
        blocker.start()
        try:
            coordinator = make_coordinator()
            with pytest.raises(PortInUseError):
                coordinator.begin()
            assert coordinator.state is AuthState.IDLE
            assert coordinator.pending is None
        finally:
            blocker.stop()


# ---------------------------------------------------------------------------
# Races, timeout and cancel
# ---------------------------------------------------------------------------


class TestResolution:
    def test_duplicate_callbacks_exchange_once(self, make_coordinator) -> None:
        exchanger = _fake_exchanger(delay=0.3)
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()
        result = CallbackResult(code="C", state=session.state)

        threads = [
            threading.Thread(target=coordinator.handle_callback, args=(result,))
            for _ in range(3)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert session.wait(timeout=5).access_token.get_secret_value() == "AT"
        assert exchanger.exchange_code.call_count == 1

    def test_late_callback_is_ignored(self, make_coordinator) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()
        result = CallbackResult(code="C", state=session.state)

        coordinator.handle_callback(result)
        coordinator.handle_callback(result)
        assert exchanger.exchange_code.call_count == 1

    def test_timeout(self, make_coordinator, settings: AuthSettings) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(
            exchanger=exchanger,
            settings=settings.model_copy(update={"timeout_seconds": 0.2}),
        )
        session = coordinator.begin()

        with pytest.raises(AuthTimeoutError) as exc_info:
            session.wait(timeout=5)

        assert exc_info.value.exit_code == 9
        assert session.listener.is_running is False
        assert coordinator.state is AuthState.IDLE

        coordinator.handle_callback(CallbackResult(code="C", state=session.state))
        exchanger.exchange_code.assert_not_called()

    def test_timeout_does_not_interrupt_exchange(
        self, make_coordinator, settings: AuthSettings
    ) -> None:
        coordinator = make_coordinator(
            exchanger=_fake_exchanger(delay=0.5),
            settings=settings.model_copy(update={"timeout_seconds": 0.2}),
        )
        session = coordinator.begin()
        coordinator.handle_callback(CallbackResult(code="C", state=session.state))
        assert session.wait(timeout=5).access_token.get_secret_value() == "AT"

    def test_cancel(self, make_coordinator) -> None:
        coordinator = make_coordinator()
        session = coordinator.begin()

        assert coordinator.cancel() is True
        with pytest.raises(AuthCancelledError):
            session.wait(timeout=5)
        assert session.listener.is_running is False
        assert coordinator.cancel() is False

    def test_cancel_during_exchange_discards_tokens(
        self, make_coordinator, store: TokenStore
    ) -> None:
        coordinator = make_coordinator(exchanger=_fake_exchanger(delay=0.5))
        events: list[bool] = []
        coordinator.add_listener(events.append)
        session = coordinator.begin()

        thread = threading.Thread(
            target=coordinator.handle_callback,
            args=(CallbackResult(code="C", state=session.state),),
        )
        thread.start()
        deadline = time.monotonic() + 5
        while coordinator.state is not AuthState.RESOLVING and time.monotonic() < deadline:
            time.sleep(0.01)

        assert coordinator.cancel() is True
        with pytest.raises(AuthCancelledError):
            session.wait(timeout=5)
        thread.join(timeout=5)

        assert store.load() is None
        assert events == []
        assert coordinator.state is AuthState.IDLE

    def test_begin_after_failure(self, make_coordinator) -> None:
        coordinator = make_coordinator()
        first = coordinator.begin()
        coordinator.handle_callback(CallbackResult(code="C", state="wrong"))
        with pytest.raises(CsrfMismatchError):
            first.wait(timeout=5)

        second = coordinator.begin()
        assert second.listener.is_running


# ---------------------------------------------------------------------------
# URI hand-off, listeners, logout
# ---------------------------------------------------------------------------


class TestHostIntegration:
    def test_handle_callback_uri(self, make_coordinator) -> None:
        coordinator = make_coordinator()
        session = coordinator.begin()
        coordinator.handle_callback_uri(
            f"spotauth://callback?{urlencode({'code': 'C', 'state': session.state})}"
        )
        assert session.wait(timeout=5).access_token.get_secret_value() == "AT"

    def test_handle_callback_uri_without_code_is_ignored(self, make_coordinator) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        coordinator.begin()
        coordinator.handle_callback_uri("spotauth://callback?foo=bar")
        assert coordinator.state is AuthState.AWAITING_REDIRECT
        exchanger.exchange_code.assert_not_called()

    def test_handle_callback_uri_checks_state(self, make_coordinator) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        session = coordinator.begin()
        coordinator.handle_callback_uri("spotauth://callback?code=C&state=forged")
        with pytest.raises(CsrfMismatchError):
            session.wait(timeout=5)
        exchanger.exchange_code.assert_not_called()

    def test_logout_clears_and_notifies(self, make_coordinator, store: TokenStore) -> None:
        store.save(_record())
        coordinator = make_coordinator()
        events: list[bool] = []
        coordinator.add_listener(events.append)

        coordinator.logout()
        assert store.load() is None
        assert events == [False]

    def test_callback_without_pending_attempt(self, make_coordinator) -> None:
        exchanger = _fake_exchanger()
        coordinator = make_coordinator(exchanger=exchanger)
        coordinator.handle_callback(CallbackResult(code="C", state="S"))
        exchanger.exchange_code.assert_not_called()
        assert coordinator.state is AuthState.IDLE
