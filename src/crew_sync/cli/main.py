"""crewsync CLI main entry point."""

from __future__ import annotations

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from crew_sync import __version__
from crew_sync.cli._helpers import get_config, open_store, output_json, run_async, track
from crew_sync.errors import CrewSyncError
from crew_sync.sync.maintenance import CleanupSummary, run_local_cleanup
from crew_sync.sync.manager import SyncManager
from crew_sync.sync.outbox import OutboxQueue, UnknownOperationError
from crew_sync.sync.state import SyncState, SyncStatePublisher
from crew_sync.utils.timeutils import format_ms

app = typer.Typer(
    name="crewsync",
    help="crew-sync - offline-first sync for crew scheduling data",
    no_args_is_help=True,
)

console = Console()

STATUS_COLORS = {
    "idle": "green",
    "pushing": "cyan",
    "pulling": "cyan",
    "offline": "yellow",
    "error": "red",
}


@app.callback()
def main(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log sync activity to stderr")
    ] = False,
) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_config().log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _print_state(state: SyncState) -> None:
    color = STATUS_COLORS.get(state.status.value, "white")
    table = Table(title="Sync status", show_header=False, border_style="bright_black")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", f"[{color}]{state.status.value}[/{color}]")
    table.add_row("Queued", str(state.queued_count))
    table.add_row("Last synced", format_ms(state.last_synced_at))
    table.add_row("Last error", state.last_error or "-")
    if state.notice:
        table.add_row("Notice", state.notice)
    console.print(table)


@app.command()
def status(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show the persisted sync status and outbox depth.

    Examples:
        crewsync status
        crewsync status --json
    """

    async def _status() -> SyncState:
        store = await open_store(get_config())
        publisher = SyncStatePublisher(store)
        await publisher.load()
        await publisher.refresh_queued(await OutboxQueue(store).count())
        return publisher.get_state()

    state = run_async(_status())
    if json_output:
        output_json(state.to_dict())
    else:
        _print_state(state)


@app.command()
def pending(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List queued operations in drain order."""

    async def _pending() -> list:
        store = await open_store(get_config())
        return await OutboxQueue(store).list_pending()

    ops = run_async(_pending())
    if json_output:
        output_json([op.to_dict() for op in ops])
        return
    if not ops:
        console.print("[green]Outbox is empty.[/green]")
        return

    table = Table(title="Pending operations", border_style="bright_black")
    table.add_column("ID", style="bright_black")
    table.add_column("Type", style="bold")
    table.add_column("Attempt", justify="right")
    table.add_column("Next attempt")
    table.add_column("Held", overflow="fold")
    for op in ops:
        table.add_row(
            op.id,
            op.type.value,
            str(op.attempt),
            format_ms(op.next_attempt_at),
            f"[red]{op.held_reason}[/red]" if op.held_reason else "-",
        )
    console.print(table)


@app.command()
def sync(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Push every queued operation to the hub now.

    Examples:
        CREWSYNC_REMOTE_URL=http://localhost:8765 crewsync sync
    """

    async def _sync() -> SyncState:
        manager = track(SyncManager.from_config(get_config()))
        await manager.start(listen=False, worker=False)
        await manager.sync_now()
        return manager.get_state()

    try:
        state = run_async(_sync())
    except CrewSyncError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e

    if json_output:
        output_json(state.to_dict())
    else:
        _print_state(state)
    if state.last_error:
        raise typer.Exit(1)


@app.command()
def retry(
    op_id: Annotated[str, typer.Argument(help="Pending operation id")],
) -> None:
    """Release a held operation so the next sync tries it again."""

    async def _retry() -> None:
        store = await open_store(get_config())
        await OutboxQueue(store).retry_held(op_id)

    try:
        run_async(_retry())
    except UnknownOperationError as e:
        typer.secho(f"No pending operation {op_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e
    typer.secho(f"Released {op_id}", fg=typer.colors.GREEN)


@app.command()
def discard(
    op_id: Annotated[str, typer.Argument(help="Pending operation id")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip confirmation")] = False,
) -> None:
    """Drop a pending operation without sending it."""
    if not force and not typer.confirm(f"Discard {op_id}? Its change will never reach the hub"):
        raise typer.Abort()

    async def _discard() -> bool:
        store = await open_store(get_config())
        return await OutboxQueue(store).discard(op_id)

    if not run_async(_discard()):
        typer.secho(f"No pending operation {op_id}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    typer.secho(f"Discarded {op_id}", fg=typer.colors.GREEN)


@app.command()
def cleanup(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Normalize stored jobs and queued operations with the current schema.

    Examples:
        crewsync cleanup
        crewsync cleanup --json
    """

    async def _cleanup() -> CleanupSummary:
        store = await open_store(get_config())
        return await run_local_cleanup(store)

    summary = run_async(_cleanup())
    if json_output:
        output_json(summary.to_dict())
        return
    typer.secho(
        f"Fixed {summary.jobs_fixed} jobs and {summary.pending_fixed} pending operations",
        fg=typer.colors.GREEN,
    )


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", "-h", help="Host to bind to")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to bind to")] = None,
) -> None:
    """Run the development sync hub.

    Examples:
        crewsync serve
        crewsync serve --host 0.0.0.0 -p 9000
    """
    import uvicorn

    config = get_config()
    host = host or config.host
    port = port or config.port
    typer.echo(f"Starting crew-sync hub on http://{host}:{port}")
    uvicorn.run(
        "crew_sync.server.app:create_default_app",
        host=host,
        port=port,
        factory=True,
    )


@app.command()
def version() -> None:
    """Show the installed version."""
    typer.echo(f"crew-sync {__version__}")


if __name__ == "__main__":
    app()
