"""PKCE code verifier and S256 challenge generation (:rfc:`7636`).

The verifier is the secret half: it stays in process memory and is only
sent to the token endpoint. The challenge is its one-way SHA-256 digest,
sent through the browser in the authorize URL.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

VERIFIER_BYTES = 32


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_verifier() -> str:
    """Return a fresh code verifier.

    32 random bytes encode to 43 base64url characters, the minimum length
    :rfc:`7636` allows.
    """
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def derive_challenge(verifier: str) -> str:
    """Return the S256 code challenge for *verifier*."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url(digest)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    verifier = generate_verifier()
    return verifier, derive_challenge(verifier)
