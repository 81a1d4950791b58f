"""
Configuration CLI Command

Manages the named databases stored in the CLI configuration file. Without
options the command runs interactively.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from experiment_archive.cli.output import console, log_error, log_info, log_success
from experiment_archive.config import (
    Configuration,
    config_path,
    load_configuration,
    save_configuration,
)
from experiment_archive.errors import ArchiveError, ConfigurationError

_ACTIONS = ("add", "default", "remove", "show", "quit")


def show_configuration(configuration: Configuration) -> None:
    if not configuration.entries:
        log_info(f"No databases configured ({config_path()})")
        return

    table = Table(title=f"Configuration {config_path()}")
    table.add_column("Name", style="cyan")
    table.add_column("Database")
    table.add_column("Default", justify="center", style="green")
    for entry in configuration.entries:
        table.add_row(entry.name, entry.db_path, "✓" if entry.is_default else "")
    console.print(table)


def _interactive(configuration: Configuration) -> Configuration:
    while True:
        show_configuration(configuration)
        action = typer.prompt(f"Action [{'/'.join(_ACTIONS)}]", default="quit").strip().lower()
        try:
            if action == "add":
                name = typer.prompt("Entry name")
                db_path = typer.prompt("Database file", default=str(Path.cwd() / "experiments.db"))
                make_default = typer.confirm("Use as default?", default=not configuration.entries)
                configuration = configuration.add_entry(name, db_path, make_default)
            elif action == "default":
                configuration = configuration.set_default(typer.prompt("Entry name"))
            elif action == "remove":
                configuration = configuration.remove_entry(typer.prompt("Entry name"))
            elif action == "show":
                continue
            elif action == "quit":
                return configuration
            else:
                log_error(f"Unknown action: {action}")
        except ConfigurationError as e:
            log_error(str(e))


def configure(
    add: Annotated[
        str | None,
        typer.Option("--add", help="Add an entry with this name (requires --path)"),
    ] = None,
    path: Annotated[
        str | None,
        typer.Option("--path", "-p", help="Database file of the entry to add"),
    ] = None,
    make_default: Annotated[
        bool,
        typer.Option("--default", help="Make the added entry the default"),
    ] = False,
    set_default: Annotated[
        str | None,
        typer.Option("--set-default", help="Make this entry the default"),
    ] = None,
    remove: Annotated[
        str | None,
        typer.Option("--remove", help="Remove this entry"),
    ] = None,
    show: Annotated[
        bool,
        typer.Option("--show", help="Show the configuration and exit"),
    ] = False,
) -> None:
    """Manage the named databases the CLI works on."""
    try:
        configuration = load_configuration()

        if show:
            show_configuration(configuration)
            return

        if add is None and set_default is None and remove is None:
            updated = _interactive(configuration)
        else:
            updated = configuration
            if add is not None:
                if not path:
                    raise ConfigurationError("--add requires --path")
                updated = updated.add_entry(add, path, make_default)
            if set_default is not None:
                updated = updated.set_default(set_default)
            if remove is not None:
                updated = updated.remove_entry(remove)

        if updated != configuration:
            written = save_configuration(updated)
            log_success(f"Configuration saved to {written}")

    except ArchiveError as e:
        log_error(f"Error updating configuration: {e}")
        raise typer.Exit(code=1)
