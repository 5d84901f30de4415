"""Spotify OAuth 2.0 authorization-code login with PKCE.

The pieces, bottom-up:

- :mod:`~spotauth.auth.pkce` and :mod:`~spotauth.auth.state` -- one-time
  secrets for a single attempt.
- :class:`RedirectListener` -- loopback HTTP server on the registered
  redirect URI; renders the result page and hands the callback off.
- :func:`build_authorize_url` -- the consent URL the browser opens.
- :class:`TokenExchanger` -- code exchange and refresh against the token
  endpoint.
- :class:`TokenStore` -- persists the token record in a secret store and
  answers "is there a usable token?".
- :class:`AuthCoordinator` -- ties the above into one login attempt with a
  timeout, CSRF check and exactly-once resolution.

Typical usage::

    from spotauth.auth import AuthCoordinator, TokenStore
    from spotauth.config import resolve_config

    settings = resolve_config().auth
    store = TokenStore.from_settings(settings)
    if not store.is_valid():
        AuthCoordinator(settings, store).authenticate()
    token = store.get_access_token()
"""

from spotauth.auth.authorize import build_authorize_url, open_in_browser
from spotauth.auth.coordinator import AuthCoordinator, AuthState, PendingAuthSession
from spotauth.auth.exchanger import TokenExchanger
from spotauth.auth.listener import RedirectListener
from spotauth.auth.pkce import derive_challenge, generate_pkce_pair, generate_verifier
from spotauth.auth.state import generate_state, verify_state
from spotauth.auth.store import (
    FileSecretStore,
    KeyringSecretStore,
    MemorySecretStore,
    SecretStore,
    TokenStore,
    create_secret_store,
)

__all__ = [
    "AuthCoordinator",
    "AuthState",
    "FileSecretStore",
    "KeyringSecretStore",
    "MemorySecretStore",
    "PendingAuthSession",
    "RedirectListener",
    "SecretStore",
    "TokenExchanger",
    "TokenStore",
    "build_authorize_url",
    "create_secret_store",
    "derive_challenge",
    "generate_pkce_pair",
    "generate_state",
    "generate_verifier",
    "open_in_browser",
    "verify_state",
]
