#!/usr/bin/env python3
"""
Command-line interface for Bizdesk.

Provides trash inspection, soft delete / restore / purge of records, activity
log queries and database housekeeping.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .activity import ActivityLogger
from .config import configure, get_config
from .db.store import EntityStore
from .exceptions import HasDependents, LifecycleError, StoreUnavailable
from .lifecycle import EntityKind, LifecycleService, get_policy

console = Console()

KIND_CHOICE = click.Choice([kind.value for kind in EntityKind], case_sensitive=False)
TRASH_COLUMNS = ["kind", "id", "label", "deleted_at"]


def _open_store() -> EntityStore:
    store = EntityStore.from_url(**get_config().get_store_config())
    store.create_all()
    return store


def _lifecycle_service(store: EntityStore) -> LifecycleService:
    config = get_config()
    return LifecycleService(
        store, activity_logger=ActivityLogger(store), config=config
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error {message}[/red]")
    sys.exit(1)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--database-url", help="Override the configured database URL")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str]) -> None:
    """Bizdesk - record lifecycle and trash management."""
    if database_url:
        configure(database_url=database_url)

    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]{config.application_name}[/bold blue] v{__version__}\n"
                "[dim]Record lifecycle and trash management[/dim]\n\n"
                "Use [bold]bizdesk --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def db() -> None:
    """Database housekeeping."""
    pass


@db.command("init")
def db_init() -> None:
    """Create all record tables."""
    try:
        store = EntityStore.from_url(**get_config().get_store_config())
        store.create_all()
        console.print(
            f"[green]✓[/green] Database ready at {get_config().database_url}"
        )
    except StoreUnavailable as e:
        _fail(f"initializing database: {e}")


@cli.group()
def config() -> None:
    """Show Bizdesk configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    config_dict = get_config().to_dict()

    if format == "json":
        console.print_json(data=config_dict)
    elif format == "yaml":
        import yaml  # type: ignore[import-untyped]

        console.print(yaml.dump(config_dict, default_flow_style=False))
    else:
        table = Table(title="Bizdesk Configuration", show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        categories = {
            "General": ["application_name", "environment", "log_level"],
            "Store": ["database_url", "database_echo", "sqlite_foreign_keys"],
            "Lifecycle": ["trash_ordering", "activity_log_enabled"],
        }

        for category, settings in categories.items():
            table.add_row(f"[bold]{category}[/bold]", "")
            for setting in settings:
                value = config_dict[setting]
                if isinstance(value, bool):
                    value = "✓" if value else "✗"
                table.add_row(f"  {setting}", str(value))

        console.print(table)


@cli.group()
def trash() -> None:
    """Inspect and export the trash."""
    pass


def _trash_rows() -> List[Dict[str, Any]]:
    snapshot = _lifecycle_service(_open_store()).list_deleted()
    return [entry.model_dump(mode="json") for entry in snapshot.entries()]


@trash.command("list")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
def trash_list(format: str) -> None:
    """List soft-deleted projects, clients, suppliers and orders."""
    try:
        rows = _trash_rows()
    except LifecycleError as e:
        _fail(f"reading trash: {e}")
        return

    if format == "json":
        console.print_json(data=rows)
        return

    if not rows:
        console.print("[yellow]Trash is empty[/yellow]")
        return

    table = Table(title=f"Trash ({len(rows)} records)")
    table.add_column("Kind", style="cyan")
    table.add_column("ID", style="green", justify="right")
    table.add_column("Name", style="white")
    table.add_column("Deleted at", style="yellow")
    for row in rows:
        deleted_at = str(row["deleted_at"]).replace("T", " ")[:19]
        table.add_row(row["kind"], str(row["id"]), row["label"], deleted_at)

    console.print(table)


@trash.command("export")
@click.option("--output", type=click.Path(), required=True, help="Output file path")
@click.option("--format", type=click.Choice(["json", "csv", "excel"]), default="csv")
def trash_export(output: str, format: str) -> None:
    """Export the trash for review."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Exporting trash...", total=None)

        try:
            rows = _trash_rows()
        except LifecycleError as e:
            progress.stop()
            _fail(f"exporting trash: {e}")
            return

        df = pd.DataFrame(rows, columns=TRASH_COLUMNS)

        output_path = Path(output)
        if format == "json":
            df.to_json(output_path, orient="records", date_format="iso", indent=2)
        elif format == "excel":
            df.to_excel(output_path, index=False, engine="openpyxl")
        else:  # csv
            df.to_csv(output_path, index=False)

        progress.stop()
        console.print(
            f"[green]✓ Exported {len(rows)} trash entries to {output_path}[/green]"
        )


@cli.command("delete")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id", type=int)
def delete_record(kind: str, entity_id: int) -> None:
    """Move a record to the trash."""
    try:
        result = _lifecycle_service(_open_store()).soft_delete(kind, entity_id)
    except HasDependents as e:
        _fail(
            f"deleting {kind} {entity_id}: {e.count} active dependent record(s) "
            "must be deleted first"
        )
        return
    except LifecycleError as e:
        _fail(f"deleting {kind} {entity_id}: {e}")
        return

    if not result.changed:
        console.print(f"[yellow]{kind} {entity_id} is already in the trash[/yellow]")
        return

    console.print(f"[green]✓[/green] Moved {kind} {entity_id} to the trash")
    for ref in result.cascaded:
        console.print(f"  [dim]• also deleted {ref.kind} {ref.id}[/dim]")


@cli.command("restore")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id", type=int)
def restore_record(kind: str, entity_id: int) -> None:
    """Restore a record from the trash."""
    try:
        _lifecycle_service(_open_store()).restore(kind, entity_id)
    except LifecycleError as e:
        _fail(f"restoring {kind} {entity_id}: {e}")
        return

    console.print(f"[green]✓[/green] Restored {kind} {entity_id}")


@cli.command("purge")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id", type=int)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def purge_record(kind: str, entity_id: int, yes: bool) -> None:
    """Permanently remove a record and the records it owns."""
    if not yes:
        click.confirm(
            f"Permanently remove {kind} {entity_id}? This cannot be undone",
            abort=True,
        )

    try:
        result = _lifecycle_service(_open_store()).purge(kind, entity_id)
    except LifecycleError as e:
        _fail(f"purging {kind} {entity_id}: {e}")
        return

    console.print(f"[green]✓[/green] Permanently removed {kind} {entity_id}")
    for label, count in result.removed.items():
        if count:
            console.print(f"  [dim]• removed {count} {label}[/dim]")
    for label, count in result.detached.items():
        if count:
            console.print(f"  [dim]• detached {count} {label}[/dim]")


@cli.command("dependents")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("entity_id", type=int)
def dependents(kind: str, entity_id: int) -> None:
    """Count active records that block deleting a record."""
    try:
        service = _lifecycle_service(_open_store())
        count = service.has_active_dependents(kind, entity_id)
    except LifecycleError as e:
        _fail(f"checking {kind} {entity_id}: {e}")
        return

    style = "red" if count else "green"
    console.print(
        f"[{style}]{kind} {entity_id} has {count} active dependent(s)[/{style}]"
    )


@cli.command("activity")
@click.option("--limit", type=int, default=20, help="Maximum entries to show")
@click.option("--kind", type=KIND_CHOICE, default=None, help="Filter by record kind")
def activity(limit: int, kind: Optional[str]) -> None:
    """Show recent lifecycle activity."""
    try:
        entries = ActivityLogger(_open_store()).recent(limit=limit, kind=kind)
    except (LifecycleError, ValueError) as e:
        _fail(f"reading activity log: {e}")
        return

    if not entries:
        console.print("[yellow]No activity recorded[/yellow]")
        return

    table = Table(title=f"Recent Activity (showing {len(entries)})")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Action", style="yellow")
    table.add_column("Record", style="blue")
    table.add_column("Details", style="dim")
    for entry in entries:
        details = entry.details or {}
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.action,
            f"{entry.entity_kind}:{entry.entity_id}",
            str(details.get("label", "")),
        )

    console.print(table)


@cli.command("doctor")
def doctor() -> None:
    """Check configuration and database access."""
    config = get_config()
    issues = []
    warnings = []

    try:
        store = _open_store()
        with store.transaction() as tx:
            for kind in EntityKind:
                tx.count(get_policy(kind).model)
    except StoreUnavailable as e:
        issues.append(f"Database not reachable: {e}")

    if config.database_url.startswith("sqlite") and not config.sqlite_foreign_keys:
        warnings.append(
            "SQLite foreign keys are disabled - purge cleanup is unchecked"
        )
    if not config.activity_log_enabled:
        warnings.append("Activity log is disabled")

    if issues:
        console.print("[red]✗ Checks failed:[/red]")
        for issue in issues:
            console.print(f"  [red]• {issue}[/red]")
        sys.exit(1)

    console.print("[green]✓ Configuration and database are healthy[/green]")
    if warnings:
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")


if __name__ == "__main__":
    cli()
