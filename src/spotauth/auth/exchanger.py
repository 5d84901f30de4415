"""Token endpoint client: authorization-code exchange and refresh.

Both grants are direct form-encoded POSTs to the provider's token endpoint.
No client secret is ever sent; possession is proven by the PKCE verifier.
``expires_at`` is computed from the clock reading taken *after* the
response arrives.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from pydantic import SecretStr

from spotauth.config import resolve_client_id
from spotauth.exceptions import ExchangeFailedError, RefreshFailedError
from spotauth.models import AuthSettings, TokenRecord, utcnow

logger = logging.getLogger(__name__)


class _TokenRequestError(Exception):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExchanger:
    """Trades authorization codes and refresh tokens for access tokens.

    Args:
        client_id: The Spotify application's client ID.
        token_url: The provider's token endpoint.
        redirect_uri: Redirect URI used in the authorize step.
        timeout: HTTP timeout in seconds.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        client_id: str,
        token_url: str,
        redirect_uri: str,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client_id = client_id
        self.token_url = token_url
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: AuthSettings, clock: Callable[[], datetime] = utcnow
    ) -> "TokenExchanger":
        """Build an exchanger from settings.

        Raises:
            ConfigError: If no client ID is configured.
        """
        return cls(
            client_id=resolve_client_id(settings),
            token_url=settings.token_url,
            redirect_uri=settings.redirect_uri,
            timeout=settings.http_timeout_seconds,
            clock=clock,
        )

    def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: Optional[str] = None,
    ) -> TokenRecord:
        """Exchange an authorization code for an access/refresh token pair.

        Args:
            code: The authorization code from the callback.
            code_verifier: The PKCE verifier of the pending session.
            redirect_uri: Overrides the configured redirect URI; must be the
                one used in the authorize URL.

        Raises:
            ExchangeFailedError: On a non-2xx response, a transport error,
                or a malformed token payload.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        try:
            payload = self._post(data)
            record = self._build_record(payload, previous_refresh_token=None)
        except _TokenRequestError as exc:
            raise ExchangeFailedError(
                f"Token exchange failed: {exc}",
                status_code=exc.status_code,
                body=exc.body,
            ) from exc
        logger.info("Authorization code exchanged; token expires at %s", record.expires_at)
        return record

    def refresh(self, refresh_token: str) -> TokenRecord:
        """Renew the access token with the refresh-token grant.

        If the provider omits ``refresh_token`` in the response, the one
        passed in is kept.

        Raises:
            RefreshFailedError: On any failure.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        try:
            payload = self._post(data)
            record = self._build_record(payload, previous_refresh_token=refresh_token)
        except _TokenRequestError as exc:
            raise RefreshFailedError(
                f"Token refresh failed: {exc}", status_code=exc.status_code
            ) from exc
        logger.info("Access token refreshed; expires at %s", record.expires_at)
        return record

    def _post(self, data: dict[str, str]) -> dict[str, Any]:
        grant = data["grant_type"]
        try:
            response = httpx.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            body = exc.response.text
            logger.warning("Token endpoint rejected %s grant with status %s", grant, status)
            raise _TokenRequestError(
                f"status {status}{_describe_oauth_error(exc.response)}",
                status_code=status,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Token endpoint unreachable for %s grant: %s", grant, type(exc).__name__)
            raise _TokenRequestError(f"could not reach the token endpoint ({exc})") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise _TokenRequestError(
                "token endpoint returned invalid JSON", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise _TokenRequestError(
                "token endpoint returned an unexpected payload",
                status_code=response.status_code,
            )
        return payload

    def _build_record(
        self, payload: dict[str, Any], previous_refresh_token: Optional[str]
    ) -> TokenRecord:
        received_at = self._clock()

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise _TokenRequestError("token response missing 'access_token' field")

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)) or expires_in < 0:
            raise _TokenRequestError("token response missing a valid 'expires_in' field")

        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            refresh_token = previous_refresh_token

        return TokenRecord(
            access_token=SecretStr(access_token),
            refresh_token=SecretStr(refresh_token) if refresh_token else None,
            expires_at=received_at + timedelta(seconds=float(expires_in)),
        )


def _describe_oauth_error(response: httpx.Response) -> str:
    """Return ``" (<error>)"`` from an OAuth error body, or an empty string."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return f" ({body['error']})"
    return ""
