"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for spotauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.spotauth/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~spotauth.models.GlobalConfig`
  JSON file holding the client ID, callback port, timeouts and the token
  storage backend.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, project-local config, and global config into the
  final effective configuration.
* **Client ID resolution** -- :func:`resolve_client_id` turns the effective
  settings into a client ID or an actionable :class:`ConfigError`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from spotauth.exceptions import ConfigError
from spotauth.models import AuthSettings, GlobalConfig

_APP_NAME = "spotauth"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "spotauth.json"

CLIENT_ID_ENV_VARS = ("SPOTAUTH_CLIENT_ID", "SPOTIFY_CLIENT_ID")
PORT_ENV_VAR = "SPOTAUTH_PORT"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/spotauth/`` (default ``~/.config/spotauth/``).
    On macOS/Windows: ``~/.spotauth/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (tokens, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/spotauth/`` (default ``~/.local/share/spotauth/``).
    On macOS/Windows: ``~/.spotauth/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_credentials_dir() -> Path:
    """Return ``<data_dir>/credentials``, creating it with ``0o700`` if necessary."""
    path = get_data_dir() / "credentials"
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given, permissions are applied to the temp file before any content is
    written, so secrets are never world-readable even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~spotauth.models.GlobalConfig`, or a
        default instance when the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local overrides from ``./spotauth.json``.

    The file holds a partial ``auth`` section, e.g.
    ``{"auth": {"client_id": "...", "port": 8888}}``, so that a repository
    can pin its own Spotify app.

    Returns:
        The parsed JSON as a dict, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid project config at {path}: expected a JSON object")
    return data


# --- Precedence resolution ---


def resolve_config(
    cli_client_id: Optional[str] = None,
    cli_port: Optional[int] = None,
    cli_format: Optional[str] = None,
) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_client_id``, ``cli_port``, ``cli_format``)
        2. Environment variables (``SPOTAUTH_CLIENT_ID``, then
           ``SPOTIFY_CLIENT_ID``; ``SPOTAUTH_PORT``)
        3. Project config (``./spotauth.json``)
        4. User config (``~/.config/spotauth/config.json``)
        5. Defaults

    Raises:
        ConfigError: If any layer is invalid.
    """
    # 5 + 4. Base global config (fills in defaults automatically)
    global_cfg = load_global_config()
    data = global_cfg.model_dump(mode="json")

    # 3. Project-local overrides
    project = load_project_config()
    if project is not None:
        project_auth = project.get("auth") or {}
        if not isinstance(project_auth, dict):
            raise ConfigError("Project config 'auth' section must be a JSON object")
        data["auth"].update(project_auth)

    # 2. Environment variables
    for var in CLIENT_ID_ENV_VARS:
        env_client_id = os.environ.get(var)
        if env_client_id:
            data["auth"]["client_id"] = env_client_id
            break
    env_port = os.environ.get(PORT_ENV_VAR)
    if env_port:
        data["auth"]["port"] = env_port

    # 1. CLI flags
    if cli_client_id is not None:
        data["auth"]["client_id"] = cli_client_id
    if cli_port is not None:
        data["auth"]["port"] = cli_port
    if cli_format is not None:
        data["output"]["format"] = cli_format

    try:
        return GlobalConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def resolve_client_id(settings: AuthSettings) -> str:
    """Return the configured Spotify client ID.

    Raises:
        ConfigError: With setup guidance when no client ID is configured.
    """
    if settings.client_id:
        return settings.client_id
    raise ConfigError(
        "No Spotify client ID configured",
        hint=(
            "Create an app at https://developer.spotify.com/dashboard with redirect URI "
            f"{settings.redirect_uri}, then run: spotauth config set auth.client_id <id>"
        ),
    )
