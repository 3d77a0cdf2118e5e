"""Profile commands -- manage connections to remote stores."""

from __future__ import annotations

from typing import Optional

import typer

from reportsync.output import error, get_output, info, success, suggest


profile_app = typer.Typer(no_args_is_help=True)


@profile_app.command("add")
def profile_add(
    ctx: typer.Context,
    name: str = typer.Argument(help="Profile name."),
    base_url: str = typer.Option(..., "--base-url", help="API root URL."),
    token_env: Optional[str] = typer.Option(
        None, "--token-env", help="Environment variable holding a bearer token."
    ),
    timeout: int = typer.Option(30, "--timeout", help="Request timeout in seconds."),
    max_retries: int = typer.Option(3, "--max-retries", help="Retries on 5xx / network errors."),
) -> None:
    """Create or replace a profile.

    Example::

        reportsync profile add work --base-url https://api.example.com/v2 --token-env WORK_TOKEN
    """
    from reportsync.config import profile_exists, save_profile
    from reportsync.models import Profile, RequestConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if profile_exists(name) and not force:
        if not typer.confirm(f"Profile '{name}' exists. Overwrite?"):
            info("Cancelled.")
            raise typer.Exit()

    profile = Profile(
        name=name,
        base_url=base_url,
        token_env=token_env,
        request=RequestConfig(timeout=timeout, max_retries=max_retries),
    )
    save_profile(profile)
    success(f"Saved profile '{name}'.")
    suggest(f"reportsync config set default_profile {name}")


@profile_app.command("list")
def profile_list() -> None:
    """List saved profiles."""
    from reportsync.config import list_profiles, load_global_config, load_profile

    names = list_profiles()
    if not names:
        info("No profiles configured.")
        suggest("reportsync profile add NAME --base-url URL")
        return

    default = load_global_config().default_profile
    rows = []
    for name in names:
        profile = load_profile(name)
        rows.append([
            name,
            profile.base_url,
            profile.token_env or "",
            "*" if name == default else "",
        ])
    get_output().print_table(["name", "base_url", "token_env", "default"], rows, title="Profiles")


@profile_app.command("remove")
def profile_remove(name: str = typer.Argument(help="Profile name.")) -> None:
    """Delete a profile."""
    from reportsync.config import delete_profile
    from reportsync.exceptions import ConfigError

    try:
        delete_profile(name)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=2) from None
    success(f"Removed profile '{name}'.")
