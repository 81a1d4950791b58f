"""
Database Management CLI Commands

- init: Initialize (and validate) the archive schema
- info: Show row counts per table
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from experiment_archive.cli.output import OutputFormat, console, log_error, log_success, render_records
from experiment_archive.cli.state import get_state
from experiment_archive.errors import ArchiveError
from experiment_archive.persistence.connection import DatabaseManager


def db_init(
    ctx: typer.Context,
    force: Annotated[
        bool,
        typer.Option("--force", help="Drop and recreate all archive tables (deletes all data)"),
    ] = False,
) -> None:
    """Initialize database schema from Pydantic models."""
    state = get_state(ctx)
    try:
        db_path = state.resolved_db_path()
        console.print(f"[yellow]Initializing database at {db_path}...[/yellow]")

        if force:
            typer.confirm(f"Drop all archive tables in {db_path}?", abort=True)

        with DatabaseManager(db_path) as manager:
            manager.initialize_schema(force_recreate=force)
            if not manager.validate_schema():
                log_error(f"Schema validation failed for {db_path}")
                raise typer.Exit(code=1)

        log_success(f"Database initialized at {db_path}")

    except ArchiveError as e:
        log_error(f"Error initializing database: {e}")
        raise typer.Exit(code=1)


def db_info(
    ctx: typer.Context,
    output_format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format"),
    ] = OutputFormat.TABLE,
) -> None:
    """Show row counts of every archive table."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            counts = archive.repository.count_rows()
            db_path = archive.db_manager.db_path

        if output_format is not OutputFormat.TABLE:
            render_records([{"table": name, "rows": count} for name, count in counts.items()], output_format)
            return

        table = Table(title=f"Archive {db_path}")
        table.add_column("Table", style="cyan")
        table.add_column("Rows", justify="right", style="magenta")
        for name, count in counts.items():
            table.add_row(name, str(count))
        console.print(table)

    except ArchiveError as e:
        log_error(f"Error reading database info: {e}")
        raise typer.Exit(code=1)
