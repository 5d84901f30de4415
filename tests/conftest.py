"""Shared test fixtures for spotauth.

Provides fixtures for isolated config environments, output state, auth
settings bound to a free loopback port, and CLI invocation. They are
discovered by pytest automatically.
"""

from __future__ import annotations

import socket
from pathlib import Path

import pytest

from spotauth.models import AuthSettings
from spotauth.output import reset_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams and the
    test finishes, the cached references become stale. Resetting forces a
    fresh manager on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and token storage to a temporary directory.

    Forces the XDG layout, points XDG_CONFIG_HOME and XDG_DATA_HOME at
    subdirectories of tmp_path, clears spotauth environment variables and
    changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("spotauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in ["SPOTAUTH_CLIENT_ID", "SPOTIFY_CLIENT_ID", "SPOTAUTH_PORT"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Auth fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def free_port() -> int:
    """A loopback port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def settings(free_port: int) -> AuthSettings:
    """Auth settings for in-process logins: free port, no hand-off delay."""
    return AuthSettings(
        client_id="test-client-id",
        port=free_port,
        timeout_seconds=5,
        handoff_delay_seconds=0,
        secret_store="memory",
    )


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
