"""Anti-CSRF ``state`` tokens for the authorization redirect."""

from __future__ import annotations

import hmac
import secrets
from typing import Optional

STATE_BYTES = 32


def generate_state() -> str:
    """Return an unguessable, URL-safe state token for one login attempt."""
    return secrets.token_urlsafe(STATE_BYTES)


def verify_state(received: Optional[str], expected: str) -> bool:
    """Return True only if *received* equals *expected* exactly.

    A missing or empty value never matches.
    """
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
