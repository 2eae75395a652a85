import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable

import typer

from core.dependencies import DependencyContainer
from data.services.sync_engine import SyncEngine

app = typer.Typer(
    name="exhibit-sync",
    help="CLI tool to inspect and sync the exhibit guide's local data.",
    add_completion=False
)


def _build_container() -> DependencyContainer:
    return DependencyContainer(logger_name="exhibit_sync_cli", show_progress=True)


async def _with_engine(action: Callable[[SyncEngine], Awaitable[Any]], start: bool = True) -> Any:
    """Build the engine, run one operation on it and shut everything down."""
    container = _build_container()
    engine = container.engine
    try:
        if start:
            await engine.start()
        else:
            await engine.load_catalog()
        return await action(engine)
    finally:
        await container.aclose()


def _run(action: Callable[[SyncEngine], Awaitable[Any]], start: bool = True) -> Any:
    try:
        return asyncio.run(_with_engine(action, start=start))
    except Exception as e:
        typer.secho(f"An unexpected error occurred: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _format_time(timestamp) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


@app.command()
def status():
    """Show remote availability and local domain sizes."""
    async def action(engine: SyncEngine):
        await engine.availability.check_availability()
        return engine

    engine = _run(action, start=False)
    current = engine.status
    typer.echo(f"Remote available: {'yes' if current.is_available else 'no'}")
    typer.echo(f"Last sync: {_format_time(current.last_sync_at)}")
    typer.echo(f"Recents: {len(engine.recent_ids)}")
    typer.echo(f"Photos: {len(engine.artifact_photos)}")
    typer.echo(f"Locations: {len(engine.locations)}")
    typer.echo(f"User items: {engine.user_item_count}")


@app.command()
def push():
    """Push local state to every available backend now."""
    async def action(engine: SyncEngine):
        if not engine.availability.is_available:
            return None
        return await engine.force_sync()

    result = _run(action)
    if result is None:
        typer.secho("Remote unavailable, nothing pushed.", fg=typer.colors.YELLOW)
    elif result:
        typer.secho("Push completed.", fg=typer.colors.GREEN)
    else:
        typer.secho("Another sync was running, push skipped.", fg=typer.colors.YELLOW)


@app.command()
def pull():
    """Pull and merge remote changes into the local store."""
    async def action(engine: SyncEngine):
        before = engine.recent_ids, engine.artifact_photos, engine.locations, engine.user_item_count
        await engine.handle_become_active()
        after = engine.recent_ids, engine.artifact_photos, engine.locations, engine.user_item_count
        return engine.availability.is_available, before != after

    available, changed = _run(action, start=False)
    if not available:
        typer.secho("Remote unavailable, nothing pulled.", fg=typer.colors.YELLOW)
    elif changed:
        typer.secho("Pull completed with remote changes merged.", fg=typer.colors.GREEN)
    else:
        typer.secho("Pull completed, already up to date.", fg=typer.colors.GREEN)


@app.command("add-recent")
def add_recent(exhibit_id: str = typer.Argument(..., help="Exhibit id to mark as recently viewed.")):
    """Move an exhibit to the front of the recents list."""
    async def action(engine: SyncEngine):
        engine.add_recent(exhibit_id)
        await engine.force_sync()

    _run(action)
    typer.secho(f"Added {exhibit_id} to recents.", fg=typer.colors.GREEN)


@app.command()
def delete(exhibit_id: str = typer.Argument(..., help="Exhibit id to delete everywhere.")):
    """Delete an exhibit with its photo and location, locally and remotely."""
    async def action(engine: SyncEngine):
        engine.delete_item(exhibit_id)
        await engine.force_sync()

    _run(action)
    typer.secho(f"Deleted {exhibit_id}.", fg=typer.colors.GREEN)


@app.command()
def recents():
    """List recently viewed exhibits, most recent first."""
    async def action(engine: SyncEngine):
        return [(item_id, engine.exhibit(item_id)) for item_id in engine.recent_ids]

    entries = _run(action, start=False)
    if not entries:
        typer.echo("No recent exhibits.")
        return
    for position, (item_id, exhibit) in enumerate(entries, start=1):
        title = exhibit.title if exhibit else "(unknown exhibit)"
        typer.echo(f"{position}. {item_id} - {title}")


if __name__ == "__main__":
    app()
