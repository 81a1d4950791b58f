"""
Deletion CLI Commands

Every command asks for confirmation unless ``--yes`` is given and deletes in
one transaction through the cascade deleter.
"""

from __future__ import annotations

from typing import Annotated

import typer

from experiment_archive.cli.commands.listing import (
    require_instance,
    require_version,
    resolve_experiment_name,
)
from experiment_archive.cli.output import log_error, log_success
from experiment_archive.cli.state import get_state
from experiment_archive.deletion import DeletionResult, parse_run_numbers
from experiment_archive.errors import ArchiveError

YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Delete without asking for confirmation"),
]


def _summary(result: DeletionResult) -> str:
    return f"{result.versions} version(s), {result.instances} instance(s), {result.runs} run(s)"


def rm_experiment(
    ctx: typer.Context,
    experiment: Annotated[str, typer.Argument(help="Experiment name or index from 'exar lse'")],
    yes: YesOption = False,
) -> None:
    """Delete an experiment with every version, instance and run."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            name = resolve_experiment_name(archive, experiment)
            if not yes:
                typer.confirm(f"Delete experiment {name} with all its versions, instances and runs?", abort=True)
            result = archive.delete_experiment(name)

        log_success(f"Deleted experiment {name}: {_summary(result)}")

    except ArchiveError as e:
        log_error(f"Error deleting experiment: {e}")
        raise typer.Exit(code=1)


def rm_version(
    ctx: typer.Context,
    version_id: Annotated[str, typer.Argument(help="Experiment version id")],
    yes: YesOption = False,
) -> None:
    """Delete an experiment version with its instances and runs."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            version = require_version(archive, version_id)
            if not yes:
                typer.confirm(
                    f"Delete version {version.id} of {version.name} with all its instances and runs?",
                    abort=True,
                )
            result = archive.delete_version(version)

        log_success(f"Deleted version {version_id}: {_summary(result)}")

    except ArchiveError as e:
        log_error(f"Error deleting version: {e}")
        raise typer.Exit(code=1)


def rm_instance(
    ctx: typer.Context,
    instance_id: Annotated[str, typer.Argument(help="Experiment instance id")],
    yes: YesOption = False,
) -> None:
    """Delete an experiment instance with its runs."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            instance = require_instance(archive, instance_id)
            if not yes:
                typer.confirm(f"Delete instance {instance.id} with all its runs?", abort=True)
            result = archive.delete_instance(instance)

        log_success(f"Deleted instance {instance_id}: {_summary(result)}")

    except ArchiveError as e:
        log_error(f"Error deleting instance: {e}")
        raise typer.Exit(code=1)


def rm_runs(
    ctx: typer.Context,
    instance_id: Annotated[str, typer.Argument(help="Experiment instance id")],
    run_numbers: Annotated[
        str,
        typer.Argument(help="Run numbers from 'exar lsr', e.g. 4, 1,2,4 or 1-6"),
    ],
    yes: YesOption = False,
) -> None:
    """Delete runs of an instance by run number."""
    state = get_state(ctx)
    try:
        numbers = parse_run_numbers(run_numbers)
        with state.open_archive() as archive:
            instance = require_instance(archive, instance_id)
            if not yes:
                typer.confirm(f"Delete runs {run_numbers} of instance {instance.id}?", abort=True)
            result = archive.delete_runs(instance, numbers)

        log_success(f"Deleted {result.runs} run(s) of instance {instance_id}")

    except ArchiveError as e:
        log_error(f"Error deleting runs: {e}")
        raise typer.Exit(code=1)
