"""Canonical Pydantic models shared across all spotauth modules.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`AuthSettings`, :class:`OutputConfig`, and :class:`GlobalConfig`.

**Auth data models** -- produced and consumed by the auth subsystem:
    :class:`TokenRecord` (persisted through the secret store) and
    :class:`CallbackResult` (transient, parsed from the redirect query).

Token values are typed as :class:`~pydantic.SecretStr` so they are masked
in ``repr``, ``str`` and default JSON dumps.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union
from urllib.parse import parse_qs

from pydantic import BaseModel, ConfigDict, Field, SecretStr

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

DEFAULT_SCOPES = [
    "user-read-playback-state",
    "user-modify-playback-state",
    "playlist-read-private",
    "playlist-read-collaborative",
]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# --- Configuration ---


class AuthSettings(BaseModel):
    """How spotauth talks to the Spotify accounts service.

    ``port`` and ``callback_path`` together form the redirect URI, which
    must be byte-identical to the one registered for the Spotify app. The
    port is never renegotiated at runtime.

    Example::

        AuthSettings(client_id="abc123", port=3000)
    """

    client_id: Optional[str] = Field(
        default=None, description="Spotify application client ID"
    )
    port: int = Field(
        default=3000, ge=1, le=65535, description="Loopback port for the redirect listener"
    )
    callback_path: str = Field(
        default="/callback", description="Path the listener serves"
    )
    authorize_url: str = SPOTIFY_AUTHORIZE_URL
    token_url: str = SPOTIFY_TOKEN_URL
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    timeout_seconds: float = Field(
        default=300.0, gt=0, description="How long to wait for the redirect"
    )
    handoff_delay_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Delay between serving the result page and resuming the login",
    )
    expiry_buffer_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Refresh tokens this long before they expire",
    )
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    secret_store: str = Field(
        default="file", description="Token storage backend: file, keyring, memory"
    )

    @property
    def redirect_uri(self) -> str:
        """The exact redirect URI sent to the provider."""
        return f"http://127.0.0.1:{self.port}{self.callback_path}"


class OutputConfig(BaseModel):
    """Output preferences."""

    format: str = Field(default="auto", description="auto, json, plain, rich")


class GlobalConfig(BaseModel):
    """Top-level configuration file model (``config.json``)."""

    auth: AuthSettings = Field(default_factory=AuthSettings)
    output: OutputConfig = Field(default_factory=OutputConfig)


# --- Auth data ---


class TokenRecord(BaseModel):
    """An access/refresh token pair with an absolute expiry.

    ``expires_at`` is computed when the token response is received, as
    ``now + expires_in``.
    """

    access_token: SecretStr
    refresh_token: Optional[SecretStr] = None
    expires_at: datetime

    def seconds_remaining(self, now: datetime | None = None) -> float:
        """Seconds until expiry (negative once expired)."""
        now = now or utcnow()
        return (_as_utc(self.expires_at) - now).total_seconds()

    def expires_within(self, seconds: float, now: datetime | None = None) -> bool:
        """Return True if the token expires within *seconds* from *now*."""
        now = now or utcnow()
        return _as_utc(self.expires_at) - now <= timedelta(seconds=seconds)


class CallbackResult(BaseModel):
    """Query parameters of one authorization redirect.

    Exactly one of ``code`` and ``error`` is set. If a redirect carries
    both, ``code`` is dropped so the attempt is treated as a failure.
    """

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None
    state: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.code is not None

    @classmethod
    def from_query(cls, query: Union[str, Mapping[str, Any]]) -> "CallbackResult":
        """Parse a raw query string or a query mapping.

        Mapping values may be plain strings or lists (as produced by
        :func:`urllib.parse.parse_qs`); the first value wins.

        Raises:
            ValueError: If neither ``code`` nor ``error`` is present.
        """
        params = parse_qs(query) if isinstance(query, str) else query

        def first(name: str) -> Optional[str]:
            value = params.get(name)
            if isinstance(value, (list, tuple)):
                value = value[0] if value else None
            return value or None

        code = first("code")
        error = first("error")
        if not code and not error:
            raise ValueError("Missing authorization code or error parameter")
        if error:
            code = None
        return cls(
            code=code,
            error=error,
            error_description=first("error_description"),
            state=first("state"),
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
