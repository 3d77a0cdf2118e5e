"""The ``reportsync accomplished`` command -- print one report snapshot."""

from __future__ import annotations

import asyncio
from typing import Optional

import typer

from reportsync.api import ReportAPI
from reportsync.exceptions import ReportsyncError
from reportsync.models import EntityType, Profile, QueryType, SyncConfig
from reportsync.output import debug, error, print_entities, suggest
from reportsync.store import SyncStore
from reportsync.transport import HttpTransport
from reportsync.views import Snapshot


def _open_transport(profile: Profile) -> HttpTransport:
    return HttpTransport(profile)


async def fetch_report(
    profile: Profile,
    sync: SyncConfig,
    project_id: str,
    entity_type: EntityType,
    query_type: QueryType,
    is_week_search: bool,
    page: Optional[int],
    count: Optional[int],
) -> Snapshot:
    """Open a store against *profile* and return the first snapshot of the report."""
    async with _open_transport(profile) as transport:
        store = SyncStore(transport, config=sync)
        live = ReportAPI(store).get_accomplished(
            project_id,
            entity_type,
            query_type=query_type,
            is_week_search=is_week_search,
            page=page,
            count=count,
        )
        snapshot = await live.first()
        debug(f"Cache stats: {store.stats()}")
        return snapshot


def accomplished_command(
    ctx: typer.Context,
    project_id: str = typer.Argument(help="Project id."),
    entity_type: EntityType = typer.Option(
        EntityType.TASK, "--type", "-t", help="Entity kind to report on."
    ),
    query_type: QueryType = typer.Option(
        QueryType.ALL, "--query", help="'all' accomplished items, or only 'delay'ed ones."
    ),
    week: bool = typer.Option(
        False, "--week/--no-week", help="Only items accomplished this week."
    ),
    page: Optional[int] = typer.Option(None, "--page", min=1, help="Page number."),
    count: Optional[int] = typer.Option(
        None, "--count", min=1, help="Page size (defaults to sync.default_page_size)."
    ),
) -> None:
    """Print the accomplished tasks or subtasks of a project.

    Example::

        reportsync accomplished p1 --week
        reportsync --json accomplished p1 --type subtask --query delay --page 2
    """
    from reportsync.config import resolve_config

    obj = ctx.obj or {}
    try:
        config, profile = resolve_config(
            cli_profile=obj.get("profile"),
            cli_base_url=obj.get("base_url"),
            cli_format=obj.get("format"),
        )
    except ReportsyncError as exc:
        error(f"Config error: {exc}")
        raise typer.Exit(code=2) from None

    if profile is None:
        error("No active profile.")
        suggest("reportsync profile add NAME --base-url URL")
        raise typer.Exit(code=2)

    if page is not None and count is None:
        count = config.sync.default_page_size

    try:
        snapshot = asyncio.run(
            fetch_report(
                profile,
                config.sync,
                project_id,
                entity_type,
                query_type,
                week,
                page,
                count,
            )
        )
    except ReportsyncError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    print_entities(snapshot, title=f"{entity_type.value}s accomplished in {project_id}")
