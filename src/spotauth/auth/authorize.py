"""Authorization URL construction and browser launch."""

from __future__ import annotations

import logging
import webbrowser
from typing import Iterable
from urllib.parse import quote, urlencode

logger = logging.getLogger(__name__)


def build_authorize_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[str],
    code_challenge: str,
    state: str,
) -> str:
    """Compose the provider's authorize URL for a PKCE login.

    *redirect_uri* must be byte-identical to the one registered with the
    provider and to the one later sent to the token endpoint.
    """
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
        "state": state,
    }
    return f"{authorize_url}?{urlencode(params, quote_via=quote)}"


def open_in_browser(url: str) -> bool:
    """Open *url* in the user's default browser.

    Returns:
        ``False`` if no browser could be launched; the URL can still be
        opened by hand.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("Could not launch a browser: %s", exc)
        return False
    if not opened:
        logger.warning("No runnable browser found for the authorization URL")
    return bool(opened)
