"""Auth commands -- log in, inspect, refresh and forget Spotify tokens.

Registered directly on the root app:

* ``spotauth login`` -- run the PKCE browser flow and store the tokens.
* ``spotauth status`` -- report whether a usable token is stored.
* ``spotauth refresh`` -- renew the access token with the refresh token.
* ``spotauth logout`` -- delete the stored tokens.

Typical workflow::

    spotauth config set auth.client_id <id>
    spotauth login
    spotauth status --json

Token values are never printed by any of these commands.
"""

from __future__ import annotations

from typing import NoReturn, Optional

import typer

from spotauth.exceptions import InvalidUsageError, SpotauthError
from spotauth.exit_codes import EXIT_AUTH_FAILURE
from spotauth.output import error, format_response, info, success, suggest, warning


def _fail(exc: SpotauthError) -> NoReturn:
    """Report *exc* as one error line plus its hint and exit with its code."""
    error(str(exc))
    if exc.hint:
        suggest(exc.hint)
    raise typer.Exit(code=exc.exit_code)


def _no_browser(url: str) -> bool:
    return False


def login_command(
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Spotify app client ID (overrides config)."
    ),
    port: Optional[int] = typer.Option(
        None, "--port", help="Callback port; must match the registered redirect URI."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the authorization URL instead of opening it."
    ),
) -> None:
    """Log in to Spotify in the browser and store the tokens.

    Starts a loopback listener on the redirect URI, opens the Spotify
    consent page, and waits until the redirect arrives, the timeout
    elapses, or Ctrl-C is pressed.

    Example::

        spotauth login
        spotauth login --no-browser --timeout 120
    """
    from spotauth.auth import AuthCoordinator, TokenStore, open_in_browser
    from spotauth.config import resolve_config

    try:
        settings = resolve_config(cli_client_id=client_id, cli_port=port).auth
        if timeout is not None:
            if timeout <= 0:
                raise InvalidUsageError("--timeout must be greater than zero")
            settings = settings.model_copy(update={"timeout_seconds": timeout})

        store = TokenStore.from_settings(settings)
        coordinator = AuthCoordinator(
            settings,
            store,
            browser=_no_browser if no_browser else open_in_browser,
        )
        session = coordinator.begin()
    except SpotauthError as exc:
        _fail(exc)

    if session.browser_opened:
        info("Opened the Spotify authorization page in your browser.")
    else:
        info("Open this URL in your browser to continue:")
        info(session.authorize_url)
    info(f"Waiting up to {settings.timeout_seconds:g}s for the redirect to {session.redirect_uri} ...")

    try:
        record = session.wait()
    except SpotauthError as exc:
        _fail(exc)
    finally:
        # Ctrl-C arrives as SystemExit from the SIGINT handler; release the port.
        coordinator.cancel()

    success(f"Logged in. Access token valid until {record.expires_at.isoformat()}.")


def status_command() -> None:
    """Show whether a usable access token is stored.

    Reports expiry details and whether a refresh token is present; never
    the tokens themselves. Exits with code 3 when not logged in.

    Example::

        spotauth status
        spotauth status --json
    """
    from spotauth.auth import TokenStore
    from spotauth.config import resolve_config

    try:
        settings = resolve_config().auth
        record = TokenStore.from_settings(settings).load()
    except SpotauthError as exc:
        _fail(exc)

    if record is None:
        format_response({"authenticated": False, "secret_store": settings.secret_store})
        suggest("Log in with: spotauth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    remaining = record.seconds_remaining()
    format_response(
        {
            "authenticated": remaining > 0,
            "expires_at": record.expires_at.isoformat(),
            "seconds_remaining": max(int(remaining), 0),
            "needs_refresh": record.expires_within(settings.expiry_buffer_seconds),
            "refresh_token_stored": record.refresh_token is not None,
            "secret_store": settings.secret_store,
        }
    )
    if remaining <= 0:
        if record.refresh_token is not None:
            suggest("Renew it with: spotauth refresh")
        else:
            suggest("Log in again with: spotauth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)


def refresh_command() -> None:
    """Renew the access token now using the stored refresh token.

    Example::

        spotauth refresh
    """
    from spotauth.auth import TokenExchanger, TokenStore, create_secret_store
    from spotauth.config import resolve_config

    try:
        settings = resolve_config().auth
        store = TokenStore(
            create_secret_store(settings),
            exchanger=TokenExchanger.from_settings(settings),
            expiry_buffer_seconds=settings.expiry_buffer_seconds,
        )
        record = store.refresh()
    except SpotauthError as exc:
        _fail(exc)

    success(f"Access token refreshed; valid until {record.expires_at.isoformat()}.")


def logout_command() -> None:
    """Delete the stored tokens.

    Example::

        spotauth logout
    """
    from spotauth.auth import TokenStore, create_secret_store
    from spotauth.config import resolve_config

    try:
        settings = resolve_config().auth
        store = TokenStore(create_secret_store(settings))
        had_tokens = store.load() is not None
        store.clear()
    except SpotauthError as exc:
        _fail(exc)

    if had_tokens:
        success("Logged out. Stored tokens deleted.")
    else:
        warning("No stored tokens found; nothing to delete.")
