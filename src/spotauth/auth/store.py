"""Token persistence on top of an opaque secret store.

:class:`TokenStore` keeps a :class:`~spotauth.models.TokenRecord` in any
object satisfying the :class:`SecretStore` contract (``get``/``set``/
``delete`` of string values) under three keys: ``accessToken``,
``refreshToken`` and ``expiresAt``. Three backends are provided:

- :class:`FileSecretStore` -- a JSON map written atomically with ``0o600``
  permissions under the data directory (the default).
- :class:`KeyringSecretStore` -- the OS keychain via :mod:`keyring`.
- :class:`MemorySecretStore` -- process-local, nothing touches disk.

Token values never reach logs; records carry them as ``SecretStr``.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

import keyring
import keyring.errors
from pydantic import SecretStr

from spotauth.auth.exchanger import TokenExchanger
from spotauth.config import atomic_write, get_credentials_dir
from spotauth.exceptions import ConfigError, RefreshFailedError
from spotauth.models import AuthSettings, TokenRecord, utcnow

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
EXPIRES_AT_KEY = "expiresAt"
TOKEN_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY)

KEYRING_SERVICE = "spotauth"


class SecretStore(Protocol):
    """Minimal key/value contract for secret storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemorySecretStore:
    """Secret store held in process memory."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class FileSecretStore:
    """Secret store backed by a single JSON file.

    Every write rewrites the whole map atomically (temp file + rename) with
    ``0o600`` permissions applied before any content is written. A missing
    or unreadable file reads as empty.

    Args:
        path: The JSON file, typically
            ``~/.local/share/spotauth/credentials/tokens.json``.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            if data:
                self._write(data)
            else:
                self._path.unlink(missing_ok=True)

    def _read(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable token file at %s", self._path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        atomic_write(self._path, json.dumps(data, indent=2) + "\n", mode=0o600)


class KeyringSecretStore:
    """Secret store backed by the system keyring.

    Entries are namespaced under *service*; keys are the account names.
    """

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self._service = service

    def get(self, key: str) -> Optional[str]:
        return keyring.get_password(self._service, key)

    def set(self, key: str, value: str) -> None:
        keyring.set_password(self._service, key, value)

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service, key)
        except keyring.errors.PasswordDeleteError:
            pass


def create_secret_store(settings: AuthSettings) -> SecretStore:
    """Return the backend named by ``settings.secret_store``.

    Raises:
        ConfigError: For an unknown backend name.
    """
    backend = settings.secret_store.lower()
    if backend == "file":
        return FileSecretStore(get_credentials_dir() / "tokens.json")
    if backend == "keyring":
        return KeyringSecretStore()
    if backend == "memory":
        return MemorySecretStore()
    raise ConfigError(
        f"Unknown secret store '{settings.secret_store}'",
        hint="Use one of: file, keyring, memory (spotauth config set auth.secret_store file)",
    )


class TokenStore:
    """Reads, writes and renews the persisted token record.

    Args:
        secrets: The backing secret store.
        exchanger: Used for refreshes. Without one, refreshing fails.
        expiry_buffer_seconds: Tokens this close to expiry count as stale.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        secrets: SecretStore,
        exchanger: Optional[TokenExchanger] = None,
        expiry_buffer_seconds: float = 300.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secrets = secrets
        self._exchanger = exchanger
        self._buffer = expiry_buffer_seconds
        self._clock = clock
        self._refresh_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "TokenStore":
        """Build a store for *settings*; refresh is enabled when a client ID is set."""
        exchanger = TokenExchanger.from_settings(settings) if settings.client_id else None
        return cls(
            create_secret_store(settings),
            exchanger=exchanger,
            expiry_buffer_seconds=settings.expiry_buffer_seconds,
        )

    def load(self) -> Optional[TokenRecord]:
        """Return the stored record, or ``None`` if it is absent or incomplete."""
        access_token = self._secrets.get(ACCESS_TOKEN_KEY)
        expires_raw = self._secrets.get(EXPIRES_AT_KEY)
        if not access_token or not expires_raw:
            return None
        try:
            expires_at = datetime.fromisoformat(expires_raw)
        except ValueError:
            logger.warning("Stored token expiry is not a valid timestamp; ignoring it")
            return None
        refresh_token = self._secrets.get(REFRESH_TOKEN_KEY)
        return TokenRecord(
            access_token=SecretStr(access_token),
            refresh_token=SecretStr(refresh_token) if refresh_token else None,
            expires_at=expires_at,
        )

    def save(self, record: TokenRecord) -> None:
        """Persist *record*. The expiry is written last."""
        self._secrets.set(ACCESS_TOKEN_KEY, record.access_token.get_secret_value())
        if record.refresh_token is not None:
            self._secrets.set(REFRESH_TOKEN_KEY, record.refresh_token.get_secret_value())
        else:
            self._secrets.delete(REFRESH_TOKEN_KEY)
        self._secrets.set(EXPIRES_AT_KEY, record.expires_at.isoformat())
        logger.debug("Token record saved; expires at %s", record.expires_at)

    def clear(self) -> None:
        """Delete every stored token key."""
        for key in TOKEN_KEYS:
            self._secrets.delete(key)
        logger.info("Stored tokens cleared")

    def is_valid(self) -> bool:
        """Return True if a usable access token is stored.

        A token expiring within the safety buffer triggers a refresh, and the
        refresh outcome is returned instead.
        """
        record = self.load()
        if record is None:
            return False
        if not record.expires_within(self._buffer, now=self._clock()):
            return True
        try:
            self.refresh()
        except RefreshFailedError as exc:
            logger.warning("Token refresh failed: %s", exc)
            return False
        return True

    def refresh(self) -> TokenRecord:
        """Renew the access token now and persist the result.

        Raises:
            RefreshFailedError: If there is no stored refresh token, no
                exchanger, or the refresh grant fails.
        """
        with self._refresh_lock:
            record = self.load()
            if record is None or record.refresh_token is None:
                raise RefreshFailedError("No refresh token stored")
            if self._exchanger is None:
                raise RefreshFailedError(
                    "Cannot refresh without a configured Spotify client ID"
                )
            renewed = self._exchanger.refresh(record.refresh_token.get_secret_value())
            self.save(renewed)
            return renewed

    def get_access_token(self) -> Optional[str]:
        """Return a valid access token for API callers, or ``None``."""
        if not self.is_valid():
            return None
        record = self.load()
        return record.access_token.get_secret_value() if record else None
