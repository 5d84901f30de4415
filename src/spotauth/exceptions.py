"""Exception hierarchy for spotauth.

All exceptions inherit from :class:`SpotauthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`spotauth.exit_codes`
and a ``hint`` -- a single actionable sentence the CLI prints after the
error message. The top-level handler in :func:`spotauth.app.main` catches
``SpotauthError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log.

Messages never contain access or refresh token values.

Subclass hierarchy::

    SpotauthError (exit 1)
    +-- ConfigError             (exit 1)
    +-- InvalidUsageError       (exit 2)
    +-- AuthError               (exit 3)
    |   +-- CsrfMismatchError
    |   +-- ProviderDeniedError
    |   +-- ExchangeFailedError
    |   +-- RefreshFailedError
    |   +-- AuthInProgressError
    |   +-- AuthCancelledError
    |   +-- AuthTimeoutError    (exit 9)
    +-- ListenerError           (exit 6)
        +-- PortInUseError      (exit 8)
"""

from __future__ import annotations

from typing import Optional

from spotauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PORT_IN_USE,
    EXIT_TIMEOUT,
)


class SpotauthError(Exception):
    """Base exception for all spotauth errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
        hint: Optional override for the class-level next-step suggestion.
    """

    exit_code: int = EXIT_GENERIC_FAILURE
    hint: Optional[str] = None

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        hint: str | None = None,
    ):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
        if hint is not None:
            self.hint = hint


class ConfigError(SpotauthError):
    """Raised for configuration problems (missing client ID, invalid JSON)."""

    exit_code = EXIT_GENERIC_FAILURE
    hint = "Inspect your settings with: spotauth config show"


class InvalidUsageError(SpotauthError):
    """Raised for invalid CLI arguments."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(SpotauthError):
    """Raised when authentication fails."""

    exit_code = EXIT_AUTH_FAILURE
    hint = "Try again with: spotauth login"


class CsrfMismatchError(AuthError):
    """The callback's ``state`` did not match the pending session.

    Treated as a potential attack: the authorization code is discarded
    without contacting the token endpoint.
    """

    hint = (
        "Start a fresh login with: spotauth login "
        "(only use the browser tab it opens)"
    )

    def __init__(self) -> None:
        super().__init__(
            "Invalid state parameter in authorization callback - potential CSRF attack"
        )


class ProviderDeniedError(AuthError):
    """The provider redirected back with an ``error`` parameter.

    Attributes:
        error_code: The raw OAuth error code (e.g. ``access_denied``).
        description: Optional ``error_description`` sent by the provider.
    """

    hint = "Approve the requested permissions in the browser, then run: spotauth login"

    def __init__(self, error_code: str, description: str | None = None) -> None:
        self.error_code = error_code
        self.description = description
        message = f"Spotify denied the authorization request: {error_code}"
        if description:
            message += f" ({description})"
        super().__init__(message)


class ExchangeFailedError(AuthError):
    """The token endpoint rejected the authorization code exchange.

    The provider's status and body are kept for diagnostics but are not
    part of the message shown to users.

    Attributes:
        status_code: HTTP status, or ``None`` for transport failures.
        body: Raw response body, or ``None`` for transport failures.
    """

    hint = (
        "Check that the redirect URI registered for your Spotify app matches "
        "'spotauth config show' exactly, then run: spotauth login"
    )

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class RefreshFailedError(AuthError):
    """Refreshing the access token failed; the caller must log in again."""

    hint = "Your session has expired. Log in again with: spotauth login"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AuthInProgressError(AuthError):
    """A login attempt is already waiting for its redirect."""

    hint = "Finish or cancel the login already in progress, then try again."

    def __init__(self) -> None:
        super().__init__("An authentication attempt is already in progress")


class AuthCancelledError(AuthError):
    """The pending login was cancelled before it completed."""

    hint = None

    def __init__(self) -> None:
        super().__init__("Authentication was cancelled")


class AuthTimeoutError(AuthError):
    """No authorization redirect arrived within the timeout window."""

    exit_code = EXIT_TIMEOUT
    hint = "Run 'spotauth login' again and complete the consent page in your browser."

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Authentication timed out after {timeout_seconds:g} seconds"
        )


class ListenerError(SpotauthError):
    """The loopback redirect listener could not be started."""

    exit_code = EXIT_CONNECTION_ERROR
    hint = "Check that 127.0.0.1 is reachable and local firewalls allow loopback traffic."


class PortInUseError(ListenerError):
    """The fixed callback port is already bound by another process.

    The port must match the redirect URI registered with Spotify, so it is
    never renegotiated; the user has to free it.
    """

    exit_code = EXIT_PORT_IN_USE

    def __init__(self, port: int) -> None:
        self.port = port
        super().__init__(
            f"Port {port} is already in use",
            hint=(
                f"Close the other application using port {port} "
                "(or a stale 'spotauth login'), then try again."
            ),
        )
