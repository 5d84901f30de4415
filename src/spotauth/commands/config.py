"""Config commands -- view and modify global configuration.

Provides the ``spotauth config`` sub-command group for reading, updating
and resetting the user's global configuration file
(:class:`~spotauth.models.GlobalConfig`). The file lives in the spotauth
config directory and holds the Spotify client ID, callback port, timeouts
and the token storage backend.
"""

from __future__ import annotations

from typing import Any

import typer

from spotauth.output import error, format_response, get_output, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration.

    Prints the merged result of CLI defaults, environment variables, the
    project file and the user config, plus the derived redirect URI that
    must be registered for the Spotify app.

    Example::

        spotauth config show
        spotauth config show --json
    """
    from spotauth.config import global_config_path, resolve_config
    from spotauth.exceptions import ConfigError

    try:
        config = resolve_config()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    info(f"Config file: {global_config_path()}")
    data = config.model_dump(mode="json")
    data["auth"]["redirect_uri"] = config.auth.redirect_uri
    format_response(data)


@config_app.command("path")
def config_path() -> None:
    """Print the path of the global config file.

    Example::

        spotauth config path
    """
    from spotauth.config import global_config_path

    get_output().print_data(str(global_config_path()))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'auth.client_id')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is coerced to match the
    existing field's type (bool, int, float, list or str). List values
    such as ``auth.scopes`` accept space- or comma-separated items. The
    updated config is validated against
    :class:`~spotauth.models.GlobalConfig` before saving.

    Raises:
        typer.Exit: With code 2 if the key path is invalid, the value
            cannot be coerced, or Pydantic validation fails.

    Example::

        spotauth config set auth.client_id 0123456789abcdef
        spotauth config set auth.port 8888
        spotauth config set auth.secret_store keyring
    """
    from spotauth.config import load_global_config, save_global_config
    from spotauth.exceptions import ConfigError
    from spotauth.models import GlobalConfig

    try:
        config = load_global_config()
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    data = config.model_dump(mode="json")

    # Navigate the dot-separated key path.
    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    try:
        coerced = _coerce(target[final_key], value)
    except ValueError:
        error(f"Expected a number for {key}, got: {value}")
        raise typer.Exit(code=2) from None

    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


def _coerce(current: Any, value: str) -> Any:
    """Convert the CLI string *value* to the type of *current*."""
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        return [item for item in value.replace(",", " ").split() if item]
    return value


@config_app.command("reset")
def config_reset(
    ctx: typer.Context,
) -> None:
    """Reset configuration to defaults.

    Replaces the persisted global config with a fresh
    :class:`~spotauth.models.GlobalConfig`. Asks for confirmation unless
    ``--force`` is active. Stored tokens are not touched.

    Example::

        spotauth config reset
        spotauth --force config reset
    """
    from spotauth.config import save_global_config
    from spotauth.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
