"""
Run Statistics

Aggregates the measurements of a set of runs per output variable using
Polars:

- numeric variables: mean, median and sample standard deviation
- label and text variables: value histogram
- bool variables: probability of ``true``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import polars as pl

from .models import ExperimentRun
from .variables import DataKind, Variable, sort_variables


@dataclass(frozen=True)
class VariableStatistics:
    """Aggregate of one output variable over a set of runs.

    Only the fields matching the variable's type are set.
    """

    variable: Variable
    count: int
    mean: float | None = None
    median: float | None = None
    std: float | None = None
    histogram: dict[str, int] = field(default_factory=dict)
    probability: float | None = None

    def summary(self) -> str:
        """One-line human readable summary."""
        data_type = self.variable.data_type
        if data_type.is_numeric:
            unit = f" {data_type.unit}" if data_type.unit else ""
            return (
                f"mean {_fmt(self.mean)}{unit}, median {_fmt(self.median)}{unit}, "
                f"std {_fmt(self.std)}{unit}"
            )
        if data_type.kind is DataKind.BOOL:
            return f"P(true) = {_fmt(self.probability)}"
        return ", ".join(f"{value}: {count}" for value, count in self.histogram.items()) or "n/a"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"variable": self.variable.name, "count": self.count}
        data_type = self.variable.data_type
        if data_type.is_numeric:
            result.update(mean=self.mean, median=self.median, std=self.std)
        elif data_type.kind is DataKind.BOOL:
            result["probability"] = self.probability
        else:
            result["histogram"] = dict(self.histogram)
        return result


@dataclass(frozen=True)
class RunStatistics:
    """Per-variable aggregates of a set of runs."""

    num_runs: int
    variables: list[VariableStatistics]

    def get(self, name: str) -> VariableStatistics | None:
        return next((stats for stats in self.variables if stats.variable.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "num_runs": self.num_runs,
            "variables": [stats.to_dict() for stats in self.variables],
        }


def _fmt(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.4g}"


def _numeric(variable: Variable, values: list[Any]) -> VariableStatistics:
    series = pl.Series(variable.name, values, dtype=pl.Float64)
    return VariableStatistics(
        variable=variable,
        count=len(values),
        mean=series.mean(),
        median=series.median(),
        std=series.std() if len(values) > 1 else None,
    )


def _histogram(variable: Variable, values: list[Any]) -> VariableStatistics:
    df = pl.DataFrame({"value": pl.Series(values, dtype=pl.Utf8)})
    counts = (
        df.group_by("value")
        .agg(pl.len().alias("count"))
        .sort(["count", "value"], descending=[True, False])
    )
    return VariableStatistics(
        variable=variable,
        count=len(values),
        histogram={row["value"]: row["count"] for row in counts.iter_rows(named=True)},
    )


def _probability(variable: Variable, values: list[Any]) -> VariableStatistics:
    series = pl.Series(variable.name, values, dtype=pl.Boolean).cast(pl.Float64)
    return VariableStatistics(variable=variable, count=len(values), probability=series.mean())


def aggregate_runs(runs: list[ExperimentRun]) -> RunStatistics:
    """Aggregate the measurements of runs of one experiment version.

    Args:
        runs: Runs to aggregate (may be empty)

    Returns:
        RunStatistics with one entry per output variable, in name order

    Examples:
        >>> stats = aggregate_runs(repo.fetch_all_runs_of_instance(instance))
        >>> stats.get("Y").mean
        42.0
    """
    if not runs:
        return RunStatistics(num_runs=0, variables=[])

    outputs = runs[0].instance.version.output_variables
    columns: dict[str, list[Any]] = {variable.name: [] for variable in outputs}
    for run in runs:
        for variable, value in run.measurements:
            columns.setdefault(variable.name, []).append(value)

    variables = []
    for variable in sort_variables(outputs):
        values = columns[variable.name]
        if variable.data_type.is_numeric:
            variables.append(_numeric(variable, values))
        elif variable.data_type.kind is DataKind.BOOL:
            variables.append(_probability(variable, values))
        else:
            variables.append(_histogram(variable, values))

    return RunStatistics(num_runs=len(runs), variables=variables)
