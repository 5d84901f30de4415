"""spotauth -- Spotify OAuth 2.0 + PKCE login for local applications.

This package signs a local application in to the Spotify Web API without a
client secret. A short-lived loopback listener catches the authorization
redirect, an in-process coordinator validates it and exchanges the code for
tokens, and a token store keeps the access token fresh with the refresh
grant.

Typical workflow::

    spotauth config set auth.client_id <your-client-id>
    spotauth login                    # opens the browser
    spotauth status                   # shows expiry, never token values

Modules:
    app: Typer application and CLI entry point.
    auth: PKCE, state tokens, redirect listener, coordinator, token store.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration with precedence resolution.
    exceptions: Exception hierarchy with exit codes and user hints.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
