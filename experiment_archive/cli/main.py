"""Experiment Archive CLI - Main entry point."""

from __future__ import annotations

from typing import Annotated

import typer

from experiment_archive import __version__
from experiment_archive.cli.output import console, setup_logging
from experiment_archive.cli.state import CliState

app = typer.Typer(
    name="exar",
    help="Experiment Archive - versioned experiment metadata, instances and runs",
    add_completion=True,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold]Experiment Archive[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    db_path: Annotated[
        str | None,
        typer.Option("--db-path", "-d", help="Database file (overrides the configuration)"),
    ] = None,
    entry: Annotated[
        str | None,
        typer.Option("--entry", "-e", help="Configuration entry to use instead of the default"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging on stderr"),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Experiment Archive CLI - list and delete archived experiments."""
    setup_logging(verbose)
    ctx.obj = CliState(db_path=db_path, entry=entry, verbose=verbose)


# Import commands after app is defined to avoid circular imports
from experiment_archive.cli.commands.configure import configure  # noqa: E402
from experiment_archive.cli.commands.db import db_info, db_init  # noqa: E402
from experiment_archive.cli.commands.delete import (  # noqa: E402
    rm_experiment,
    rm_instance,
    rm_runs,
    rm_version,
)
from experiment_archive.cli.commands.listing import (  # noqa: E402
    list_experiments,
    list_instances,
    list_runs,
    list_versions,
)

app.command(name="configure", help="Manage the named databases the CLI works on")(configure)
app.command(name="init", help="Create the archive schema in the selected database")(db_init)
app.command(name="info", help="Show row counts of the selected database")(db_info)
app.command(name="lse", help="List experiments")(list_experiments)
app.command(name="lsv", help="List versions of an experiment")(list_versions)
app.command(name="lsi", help="List instances of an experiment version")(list_instances)
app.command(name="lsr", help="List runs of an experiment instance")(list_runs)
app.command(name="rm-experiment", help="Delete an experiment with all its versions")(rm_experiment)
app.command(name="rm-version", help="Delete an experiment version with its instances")(rm_version)
app.command(name="rm-instance", help="Delete an experiment instance with its runs")(rm_instance)
app.command(name="rm-runs", help="Delete runs of an instance by run number")(rm_runs)


if __name__ == "__main__":
    app()
