"""Config commands -- view and modify global configuration.

Provides the ``reportsync config`` sub-command group for reading, updating,
and resetting the user's global configuration file
(:class:`~reportsync.models.GlobalConfig`).
"""

from __future__ import annotations

import typer

from reportsync.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Example::

        reportsync config show
        reportsync --json config show
    """
    from reportsync.config import get_config_dir, load_global_config

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'sync.default_page_size')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is coerced to the existing field's type (bool, int, or str)
    and validated before saving.

    Example::

        reportsync config set default_profile work
        reportsync config set sync.week_starts_on 6
    """
    from reportsync.config import load_global_config, save_global_config, set_config_value
    from reportsync.exceptions import ConfigError

    try:
        config = set_config_value(load_global_config(), key, value)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None

    save_global_config(config)
    success(f"Set {key} = {value}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.
    """
    from reportsync.config import save_global_config
    from reportsync.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
