"""chatsync CLI - run B2Chat extract/transform jobs from a terminal."""

import asyncio
import json
import logging
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="chatsync",
    help="B2Chat extract/transform sync pipeline",
    no_args_is_help=True,
)
console = Console()

ENTITY_CHOICES = ("contacts", "chats", "all")


def _output_result(result: dict[str, Any], json_output: bool = False) -> None:
    if json_output:
        console.print_json(json.dumps(result, default=str))
    else:
        console.print_json(json.dumps(result, default=str, indent=2))


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_entity(entity_type: str) -> None:
    if entity_type not in ENTITY_CHOICES:
        console.print(f"[red]Unknown entity type {entity_type!r}; use one of {', '.join(ENTITY_CHOICES)}[/red]")
        raise typer.Exit(2)


async def _ensure_schema() -> None:
    from .config import settings

    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


@app.command()
def extract(
    entity_type: str = typer.Argument("all", help="contacts, chats or all"),
    full: bool = typer.Option(False, "--full", help="Ignore the watermark and fetch everything"),
    preset: str = typer.Option(None, "--range", "-r", help="Time range preset: 1d, 7d, 30d, 90d"),
    batch_size: int = typer.Option(None, "--batch-size", "-b", help="Records per page"),
    max_pages: int = typer.Option(None, "--max-pages", help="Stop after this many pages"),
    user: str = typer.Option("cli", "--user", "-u", help="User id recorded in the audit log"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Fetch B2Chat export pages into the raw staging tables."""
    from .b2chat.client import B2ChatAPIError, B2ChatClient
    from .database import async_session_factory
    from .schemas.sync import ExtractOptions
    from .sync.cancellation import CancellationRegistry
    from .sync.events import SyncEventEmitter
    from .sync.extract_engine import ExtractEngine

    _check_entity(entity_type)
    _configure_logging(verbose)
    options = ExtractOptions(
        full_sync=full,
        time_range_preset=preset,
        batch_size=batch_size,
        max_pages=max_pages,
    )

    async def _run():
        await _ensure_schema()
        async with async_session_factory() as db, B2ChatClient() as client:
            engine = ExtractEngine(db, client, CancellationRegistry(), SyncEventEmitter())
            if entity_type == "all":
                return await engine.extract_all(options, user_id=user)
            return await engine.extract(entity_type, options, user_id=user)

    try:
        result = asyncio.run(_run())
    except B2ChatAPIError as e:
        console.print(f"[red]{e.user_message()}[/red]")
        raise typer.Exit(1)

    _output_result(result.model_dump(mode="json", by_alias=True), json_output)


@app.command()
def transform(
    entity_type: str = typer.Argument("all", help="contacts, chats or all"),
    extract_sync_id: str = typer.Option(None, "--extract", "-e", help="Only rows from this extract run"),
    batch_size: int = typer.Option(None, "--batch-size", "-b", help="Rows claimed per batch"),
    user: str = typer.Option("cli", "--user", "-u", help="User id recorded in the audit log"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Normalize pending raw rows into contacts, agents and chats."""
    from .database import async_session_factory
    from .schemas.sync import TransformOptions
    from .sync.cancellation import CancellationRegistry
    from .sync.errors import ConfigurationError
    from .sync.events import SyncEventEmitter
    from .sync.transform_engine import TransformEngine

    _check_entity(entity_type)
    if entity_type == "all" and extract_sync_id:
        console.print("[red]--extract needs a single entity type[/red]")
        raise typer.Exit(2)
    _configure_logging(verbose)
    options = TransformOptions(batch_size=batch_size)

    async def _run():
        await _ensure_schema()
        async with async_session_factory() as db:
            engine = TransformEngine(db, CancellationRegistry(), SyncEventEmitter())
            if entity_type == "all":
                return await engine.transform_all(options, user_id=user)
            return await engine.transform(entity_type, extract_sync_id, options, user_id=user)

    try:
        result = asyncio.run(_run())
    except ConfigurationError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    _output_result(result.model_dump(mode="json", by_alias=True), json_output)


@app.command()
def pending():
    """Show how many staged rows are waiting for a transform."""
    from .database import async_session_factory
    from .sync.run_logs import pending_counts

    async def _run():
        await _ensure_schema()
        async with async_session_factory() as db:
            return await pending_counts(db)

    counts = asyncio.run(_run())
    table = Table(title="Pending Raw Records")
    table.add_column("Entity", style="cyan")
    table.add_column("Pending", justify="right")
    table.add_row("contacts", str(counts["contacts"]))
    table.add_row("chats", str(counts["chats"]))
    table.add_row("[bold]total[/bold]", f"[bold]{counts['total']}[/bold]")
    console.print(table)


@app.command()
def runs(
    entity_type: str = typer.Option(None, "--entity", "-e", help="contacts or chats"),
    limit: int = typer.Option(20, "--limit", "-l", help="Max runs to list"),
):
    """List recent extract runs, newest first."""
    from .database import async_session_factory
    from .sync.run_logs import list_extract_logs

    async def _run():
        await _ensure_schema()
        async with async_session_factory() as db:
            return await list_extract_logs(db, entity_type=entity_type, limit=limit)

    logs = asyncio.run(_run())
    table = Table(title="Extract Runs")
    table.add_column("Sync ID", style="cyan")
    table.add_column("Entity")
    table.add_column("Status")
    table.add_column("Records", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Started")
    status_styles = {"completed": "green", "failed": "red", "cancelled": "yellow"}
    for log in logs:
        style = status_styles.get(log.status, "white")
        table.add_row(
            log.sync_id,
            log.entity_type,
            f"[{style}]{log.status}[/{style}]",
            str(log.records_fetched),
            str(log.total_pages),
            log.started_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def stats(
    time_range: str = typer.Option("24h", "--range", "-r", help="24h, 7d or 30d"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Success rate, duration and throughput of recent runs."""
    from .database import async_session_factory
    from .services.analytics_svc import sync_statistics

    async def _run():
        await _ensure_schema()
        async with async_session_factory() as db:
            return await sync_statistics(db, time_range)

    try:
        result = asyncio.run(_run())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2)

    if json_output:
        _output_result(result, json_output)
        return

    table = Table(title=f"Sync Statistics ({time_range})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    rate = result["successRate"]
    duration = result["avgDuration"]
    table.add_row("Total runs", str(result["totalRuns"]))
    table.add_row("Success rate", f"{rate}%" if rate is not None else "-")
    table.add_row("Avg duration", f"{duration} ms" if duration is not None else "-")
    table.add_row("Throughput", f"{result['throughput']} records/h")
    console.print(table)


@app.command()
def reconcile(
    user: str = typer.Option("cli", "--user", "-u", help="User id recorded in the audit log"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Report stub contacts that were never upgraded by a contacts export."""
    from .database import async_session_factory
    from .services.contact_reconcile_svc import reconcile_contacts

    async def _run():
        await _ensure_schema()
        async with async_session_factory() as db:
            return await reconcile_contacts(db, user_id=user)

    result = asyncio.run(_run())
    if json_output:
        _output_result(result, json_output)
        return

    summary = result["summary"]
    table = Table(title="Contact Reconciliation")
    table.add_column("Source", style="cyan")
    table.add_column("Contacts", justify="right")
    table.add_row("Stubs (chat embedded)", str(summary["totalStubs"]))
    table.add_row("Full (contacts export)", str(summary["totalFullContacts"]))
    table.add_row("Upgraded stubs", str(summary["totalUpgradedContacts"]))
    table.add_row("Stale stubs", str(summary["staleStubsFound"]))
    console.print(table)
    for line in result["recommendations"]:
        console.print(f"- {line}")


@app.command()
def migrate(revision: str = typer.Argument("head", help="Target revision")):
    """Apply Alembic migrations to the configured database."""
    from alembic import command
    from alembic.config import Config

    from .config import settings

    command.upgrade(Config(str(settings.alembic_ini)), revision)
    console.print(f"[green]Database upgraded to {revision}[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8030, "--port", "-p", help="Bind port"),
):
    """Run the sync API with uvicorn."""
    import uvicorn

    uvicorn.run("chatsync.app:app", host=host, port=port)


if __name__ == "__main__":
    app()
