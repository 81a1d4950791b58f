"""Output formatting utilities for CLI.

Follows the golden rule:
- stdout = machine-readable data (CSV, JSON, YAML) and listing tables
- stderr = human-readable logs (progress, errors, info, verbose output)

This separation allows piping listings to other tools while keeping
colored messages in the terminal.
"""

from __future__ import annotations

import csv
import json
import logging
import sys
from enum import Enum
from typing import Any

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

# stderr console for human logs (preserves colors when redirected)
console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Rendering of listing commands."""

    TABLE = "table"
    CSV = "csv"
    JSON = "json"
    YAML = "yaml"


def setup_logging(verbose: bool = False) -> None:
    """Route library logging to stderr through rich.

    Args:
        verbose: Show DEBUG messages instead of WARNING and above
    """
    root = logging.getLogger("experiment_archive")
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


# ============================================================================
# Messages (stderr)
# ============================================================================


def log_info(message: str, quiet: bool = False) -> None:
    if not quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def log_success(message: str, quiet: bool = False) -> None:
    if not quiet:
        console.print(f"[green]✓[/green] {message}")


def log_error(message: str) -> None:
    """Log error message to stderr (always shown)."""
    console.print(f"[red]✗ {escape(message)}[/red]")


# ============================================================================
# Records (stdout)
# ============================================================================


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


def output_json(data: Any, indent: int | None = 2) -> None:
    """Output JSON to stdout (machine-readable)."""
    print(json.dumps(data, indent=indent, default=str), flush=True)


def render_records(
    records: list[dict[str, Any]],
    fmt: OutputFormat = OutputFormat.TABLE,
    title: str | None = None,
    columns: list[str] | None = None,
) -> None:
    """Print records in the requested format.

    Args:
        records: One dict per row
        fmt: Output format
        title: Table title (table format only)
        columns: Column order (defaults to the keys of the first record)
    """
    if columns is None:
        columns = list(records[0].keys()) if records else []

    if fmt is OutputFormat.JSON:
        output_json(records)
    elif fmt is OutputFormat.YAML:
        sys.stdout.write(yaml.safe_dump(records, sort_keys=False, allow_unicode=True) if records else "[]\n")
        sys.stdout.flush()
    elif fmt is OutputFormat.CSV:
        writer = csv.writer(sys.stdout, lineterminator="\n")
        writer.writerow(columns)
        for record in records:
            writer.writerow([_cell(record.get(column)) for column in columns])
        sys.stdout.flush()
    else:
        table = Table(title=title)
        for i, column in enumerate(columns):
            table.add_column(column, style="cyan" if i == 0 else None, overflow="fold")
        for record in records:
            table.add_row(*(escape(_cell(record.get(column))) for column in columns))
        Console().print(table)
