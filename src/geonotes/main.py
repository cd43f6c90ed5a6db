"""Command line entry point for the geonotes engine."""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import typer

from geonotes.app import App
from geonotes.config import Config
from geonotes.core.modules.note.models import NoteFilters
from geonotes.core.modules.note.utils import count_private_notes, format_note
from geonotes.errors import StorageError, UserError
from geonotes.logging import setup_logging
from geonotes.utils import parse_model

cli = typer.Typer(name="geonotes", help="Geospatial note engine.", no_args_is_help=True, rich_markup_mode=None)


def create_app() -> App:
    config = Config()
    setup_logging(config.debug)
    return App(config)


async def _import_notes(app: App, items: list[Any]) -> int:
    async with app.lifespan():
        job_id = await app.submit_bulk_import(items)
        job = await app.wait_for_bulk_import(job_id)

    typer.echo(f"Job {job.id}: {job.status} ({job.succeeded} succeeded, {job.failed} failed of {job.total})")
    for result in job.items:
        if result.error_code is not None:
            typer.echo(f"  item {result.index}: {result.error_code}: {result.error_message}", err=True)
    return 0 if job.failed == 0 else 1


async def _nearby(app: App, lat: float, lon: float, radius: float) -> None:
    async with app.lifespan():
        notes = await app.query_nearby(lat, lon, radius)
    for note in notes:
        typer.echo(f"{note.id} [{note.state}] {format_note(note)}")


async def _list_notes(app: App, filters: dict[str, Any], limit: int, offset: int) -> None:
    async with app.lifespan():
        page = await app.list_notes(parse_model(NoteFilters, filters), limit, offset)
    for note in page.items:
        typer.echo(f"{note.id} [{note.state}] {format_note(note)}")
    typer.echo(f"{len(page.items)} of {page.total} notes, {count_private_notes(page.items)} private")
    if page.has_more:
        typer.echo(f"More notes available, use --offset {offset + len(page.items)}")


@cli.command("import")
def import_notes(
    path: Annotated[Path, typer.Argument(help="JSON file with an array of note objects", exists=True, dir_okay=False)],
) -> None:
    """Bulk import notes from a JSON file."""
    try:
        items = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {path} is not valid JSON: {e}", err=True)
        raise typer.Exit(1) from None

    try:
        exit_code = asyncio.run(_import_notes(create_app(), items))
    except (UserError, StorageError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    raise typer.Exit(exit_code)


@cli.command()
def nearby(
    lat: Annotated[float, typer.Option("--lat", help="Latitude in degrees")],
    lon: Annotated[float, typer.Option("--lon", help="Longitude in degrees")],
    radius: Annotated[float, typer.Option("--radius", "-r", help="Radius in meters")] = 1000.0,
) -> None:
    """List notes within a radius of a point, closest first."""
    try:
        asyncio.run(_nearby(create_app(), lat, lon, radius))
    except (UserError, StorageError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

@cli.command("list")
def list_notes(
    state: Annotated[str | None, typer.Option("--state", help="Only notes in this state")] = None,
    owner: Annotated[str | None, typer.Option("--owner", help="Only notes of this owner")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Page size")] = 20,
    offset: Annotated[int, typer.Option("--offset", help="Notes to skip")] = 0,
) -> None:
    """List notes, newest first."""
    filters = {"state": state, "owner_id": owner}
    try:
        asyncio.run(_list_notes(create_app(), filters, limit, offset))
    except (UserError, StorageError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
