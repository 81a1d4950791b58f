"""
Listing CLI Commands

- lse: experiments
- lsv: versions of an experiment (by name or 1-based index from ``lse``)
- lsi: instances of a version, optionally with run statistics
- lsr: runs of an instance, optionally aggregated
"""

from __future__ import annotations

from typing import Annotated, Any

import typer

from experiment_archive.archive import ExperimentArchive
from experiment_archive.cli.output import OutputFormat, log_error, render_records
from experiment_archive.cli.state import get_state
from experiment_archive.errors import ArchiveError
from experiment_archive.models import ExperimentInstance, ExperimentVersion
from experiment_archive.persistence import queries
from experiment_archive.statistics import aggregate_runs
from experiment_archive.variables import Variable, sort_variables

FormatOption = Annotated[
    OutputFormat,
    typer.Option("--format", "-f", help="Output format"),
]


class NotFoundError(ArchiveError):
    """Raised when a command argument names nothing in the archive."""


# ============================================================================
# Lookups (shared with the delete commands)
# ============================================================================


def resolve_experiment_name(archive: ExperimentArchive, name_or_index: str) -> str:
    """Experiment name from a name or a 1-based index into the sorted names."""
    names = archive.fetch_experiments()
    if name_or_index in names:
        return name_or_index
    if name_or_index.isdigit():
        index = int(name_or_index)
        if 1 <= index <= len(names):
            return names[index - 1]
        raise NotFoundError(f"No experiment number {index} ({len(names)} experiments)")
    raise NotFoundError(f"Experiment not found: {name_or_index}")


def require_version(archive: ExperimentArchive, version_id: str) -> ExperimentVersion:
    version = archive.fetch_version_by_id(version_id)
    if version is None:
        raise NotFoundError(f"Experiment version not found: {version_id}")
    return version


def require_instance(archive: ExperimentArchive, instance_id: str) -> ExperimentInstance:
    instance = archive.fetch_instance_by_id(instance_id)
    if instance is None:
        raise NotFoundError(f"Experiment instance not found: {instance_id}")
    return instance


def _describe(variables: frozenset[Variable]) -> str:
    return ", ".join(f"{v.name}: {v.data_type}" for v in sort_variables(variables))


# ============================================================================
# Commands
# ============================================================================


def list_experiments(ctx: typer.Context, output_format: FormatOption = OutputFormat.TABLE) -> None:
    """List all experiments with their number of versions."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            records = [
                {"index": i, "name": name, "versions": len(archive.fetch_all_versions_by_name(name))}
                for i, name in enumerate(archive.fetch_experiments(), start=1)
            ]
        render_records(records, output_format, title="Experiments", columns=["index", "name", "versions"])

    except ArchiveError as e:
        log_error(f"Error listing experiments: {e}")
        raise typer.Exit(code=1)


def list_versions(
    ctx: typer.Context,
    experiment: Annotated[str, typer.Argument(help="Experiment name or index from 'exar lse'")],
    output_format: FormatOption = OutputFormat.TABLE,
) -> None:
    """List all versions of an experiment, oldest first."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            name = resolve_experiment_name(archive, experiment)
            versions = archive.fetch_all_versions_by_name(name)

        if output_format in (OutputFormat.JSON, OutputFormat.YAML):
            render_records([version.to_dict() for version in versions], output_format)
            return

        records = [
            {
                "id": version.id,
                "version_tag": version.version_tag,
                "created_at": version.created_at.isoformat(timespec="seconds"),
                "description": version.description,
                "researchers": ", ".join(sorted(version.researchers)),
                "inputs": _describe(version.input_variables),
                "outputs": _describe(version.output_variables),
            }
            for version in versions
        ]
        render_records(
            records,
            output_format,
            title=f"Versions of {name}",
            columns=["id", "version_tag", "created_at", "description", "researchers", "inputs", "outputs"],
        )

    except ArchiveError as e:
        log_error(f"Error listing versions: {e}")
        raise typer.Exit(code=1)


def variable_columns(fixed: list[str], variables: frozenset[Variable], prefix: str) -> dict[str, str]:
    """Map variable names to column names.

    A variable whose name is already taken by a fixed column (or an earlier
    variable) is shown as ``<prefix>:<name>``.
    """
    taken = set(fixed)
    columns = {}
    for variable in sort_variables(variables):
        column = variable.name if variable.name not in taken else f"{prefix}:{variable.name}"
        taken.add(column)
        columns[variable.name] = column
    return columns


def _instance_records(
    archive: ExperimentArchive, version: ExperimentVersion, statistics: bool
) -> tuple[list[dict[str, Any]], list[str]]:
    with archive.db_manager.session("count runs", version.id) as conn:
        run_counts = {
            row["instance_id"]: row["num_runs"]
            for row in queries.get_run_counts(conn, version.id).iter_rows(named=True)
        }

    fixed = ["id", "runs"]
    inputs = variable_columns(fixed, version.input_variables, "input")
    outputs = variable_columns([*fixed, *inputs.values()], version.output_variables, "output") if statistics else {}

    records = []
    for instance in archive.fetch_all_instances_of_version(version):
        record: dict[str, Any] = {"id": instance.id, "runs": run_counts.get(instance.id, 0)}
        record.update((inputs[name], value) for name, value in instance.values.items())
        if statistics:
            stats = aggregate_runs(archive.fetch_all_runs_of_instance(instance))
            for name, column in outputs.items():
                variable_stats = stats.get(name)
                record[column] = variable_stats.summary() if variable_stats else "n/a"
        records.append(record)

    columns = ["id", *inputs.values(), "runs", *outputs.values()]
    return records, columns


def list_instances(
    ctx: typer.Context,
    version: Annotated[
        str,
        typer.Argument(help="Version id, or experiment name/index together with --latest"),
    ],
    latest: Annotated[
        bool,
        typer.Option("--latest", "-l", help="Use the latest version of the named experiment"),
    ] = False,
    statistics: Annotated[
        bool,
        typer.Option("--statistics", "-s", help="Summarize the runs of each instance"),
    ] = False,
    output_format: FormatOption = OutputFormat.TABLE,
) -> None:
    """List the instances of an experiment version with their input values."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            if latest:
                name = resolve_experiment_name(archive, version)
                selected = archive.fetch_latest_version_by_name(name)
                if selected is None:
                    raise NotFoundError(f"Experiment {name} has no versions")
            else:
                selected = require_version(archive, version)
            records, columns = _instance_records(archive, selected, statistics)

        render_records(records, output_format, title=f"Instances of {selected.name} ({selected.id})", columns=columns)

    except ArchiveError as e:
        log_error(f"Error listing instances: {e}")
        raise typer.Exit(code=1)


def list_runs(
    ctx: typer.Context,
    instance_id: Annotated[str, typer.Argument(help="Experiment instance id")],
    statistics: Annotated[
        bool,
        typer.Option("--statistics", "-s", help="Show aggregates instead of single runs"),
    ] = False,
    output_format: FormatOption = OutputFormat.TABLE,
) -> None:
    """List the runs of an experiment instance, numbered by recording time."""
    state = get_state(ctx)
    try:
        with state.open_archive() as archive:
            instance = require_instance(archive, instance_id)
            runs = archive.fetch_all_runs_of_instance(instance)

        fixed = ["run", "id", "recorded_at"]
        outputs = variable_columns(fixed, instance.version.output_variables, "output")

        if statistics:
            stats = aggregate_runs(runs)
            if output_format in (OutputFormat.JSON, OutputFormat.YAML):
                render_records([s.to_dict() for s in stats.variables], output_format)
            else:
                records = [
                    {"variable": s.variable.name, "type": str(s.variable.data_type), "count": s.count, "summary": s.summary()}
                    for s in stats.variables
                ]
                render_records(
                    records,
                    output_format,
                    title=f"Statistics of {stats.num_runs} runs of {instance.id}",
                    columns=["variable", "type", "count", "summary"],
                )
            return

        records = [
            {
                "run": number,
                "id": run.id,
                "recorded_at": run.recorded_at.isoformat(),
                **{outputs[name]: value for name, value in run.values.items()},
            }
            for number, run in enumerate(runs, start=1)
        ]
        render_records(
            records,
            output_format,
            title=f"Runs of {instance.id}",
            columns=[*fixed, *outputs.values()],
        )

    except ArchiveError as e:
        log_error(f"Error listing runs: {e}")
        raise typer.Exit(code=1)
