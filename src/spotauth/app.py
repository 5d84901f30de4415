"""Typer application and CLI entry point for spotauth.

This module wires together the top-level Typer application and registers the
built-in commands: ``login``, ``status``, ``refresh`` and ``logout`` at the
top level, plus the ``config`` sub-group.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
A :class:`~spotauth.exceptions.SpotauthError` becomes one error line plus
its hint; any other exception is written to a crash log under the data
directory.

See Also:
    :mod:`spotauth.config`: Configuration resolution.
    :mod:`spotauth.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer
from rich.logging import RichHandler

from spotauth import __version__
from spotauth.exit_codes import EXIT_GENERIC_FAILURE
from spotauth.output import OutputFormat


app = typer.Typer(
    name="spotauth",
    help="Sign in to the Spotify Web API with OAuth 2.0 + PKCE.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #

from spotauth.commands.auth import (  # noqa: E402
    login_command,
    logout_command,
    refresh_command,
    status_command,
)
from spotauth.commands.config import config_app  # noqa: E402

app.command("login")(login_command)
app.command("status")(status_command)
app.command("refresh")(refresh_command)
app.command("logout")(logout_command)
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"spotauth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~spotauth.output.OutputManager` from CLI
    flags, routes library logging to stderr when ``--verbose`` is given, and
    stores shared options in ``ctx.obj``.
    """
    from spotauth.output import OutputManager, set_output

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = _configured_format()

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
    )
    set_output(output)
    _configure_logging(output.stderr_console if verbose else None)

    ctx.ensure_object(dict)
    ctx.obj["force"] = force


def _configured_format() -> OutputFormat:
    """Return the ``output.format`` setting, or AUTO if it cannot be read.

    A broken config file is reported by the command that needs it.
    """
    from spotauth.config import resolve_config
    from spotauth.exceptions import ConfigError

    try:
        return OutputFormat(resolve_config().output.format)
    except (ConfigError, ValueError):
        return OutputFormat.AUTO


def _configure_logging(console: Any) -> None:
    """Attach a Rich handler to the ``spotauth`` logger.

    Without a console (no ``--verbose``) records stop at the package's
    ``NullHandler``; user-facing messages go through :mod:`spotauth.output`.
    """
    logger = logging.getLogger("spotauth")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    if console is None:
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
        return

    handler = RichHandler(console=console, show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from spotauth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``spotauth`` console script.

    Unhandled :class:`~spotauth.exceptions.SpotauthError` instances cause a
    clean exit with the error's ``exit_code`` after printing the message and
    its hint. All other exceptions produce a crash log and a generic failure
    exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from spotauth.exceptions import SpotauthError
        from spotauth.output import error, suggest

        if isinstance(exc, SpotauthError):
            error(str(exc))
            if exc.hint:
                suggest(exc.hint)
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
