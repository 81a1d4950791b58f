"""
DuckDB Write Functions

Inserts and deletes for the archive tables. Functions take an open
connection and never manage transactions; callers run them inside
``DatabaseManager.transaction()``.

Value rows (input values, measurements) are written in batches through
Polars DataFrames.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

import duckdb
import polars as pl

from ..ids import to_naive_utc
from ..models import Assignment, ExperimentInstance, ExperimentRun, ExperimentVersion
from ..variables import Variable
from .models import VariableKind

_VALUE_ROW_SCHEMA = {"owner_id": pl.Utf8, "var_name": pl.Utf8, "value": pl.Utf8}


def _value_rows(owner_id: str, assignment: Assignment) -> pl.DataFrame:
    return pl.DataFrame(
        [(owner_id, variable.name, variable.serialize(value)) for variable, value in assignment],
        schema=_VALUE_ROW_SCHEMA,
        orient="row",
    )


# ============================================================================
# Variable Catalog
# ============================================================================


def insert_experiment(conn: duckdb.DuckDBPyConnection, name: str) -> None:
    """Register an experiment name if absent."""
    conn.execute("INSERT INTO experiments (name) VALUES (?) ON CONFLICT (name) DO NOTHING", [name])


def insert_variables(conn: duckdb.DuckDBPyConnection, variables: Iterable[Variable]) -> None:
    """Insert catalog rows for variables whose name is not yet present.

    Existing rows are never updated.
    """
    for variable in sorted(variables, key=lambda v: v.name):
        conn.execute(
            """
            INSERT INTO variables (name, description, type)
            VALUES (?, ?, ?)
            ON CONFLICT (name) DO NOTHING
            """,
            [variable.name, variable.description, variable.data_type.to_json()],
        )


# ============================================================================
# Versions, Instances & Runs
# ============================================================================


def insert_version(conn: duckdb.DuckDBPyConnection, version: ExperimentVersion) -> None:
    """Insert a version row and link its variables."""
    conn.execute(
        """
        INSERT INTO experiment_versions (id, name, version_tag, created_at, description, researchers)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [
            version.id,
            version.name,
            version.version_tag,
            to_naive_utc(version.created_at),
            version.description,
            json.dumps(sorted(version.researchers)),
        ],
    )

    links = [(v, VariableKind.INPUT) for v in version.input_variables]
    links += [(v, VariableKind.OUTPUT) for v in version.output_variables]
    for variable, kind in sorted(links, key=lambda link: link[0].name):
        conn.execute(
            """
            INSERT INTO experiment_variables (var_name, ex_name, ex_version_id, kind)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (var_name, ex_version_id) DO NOTHING
            """,
            [variable.name, version.name, version.id, kind.value],
        )


def insert_instance(conn: duckdb.DuckDBPyConnection, instance: ExperimentInstance, input_key: str) -> int:
    """Insert an instance row and its input values.

    Returns:
        Number of input values written

    Raises:
        duckdb.ConstraintException: If an instance with the same input key exists
    """
    conn.execute(
        "INSERT INTO experiment_instances (id, name, version_id, input_key) VALUES (?, ?, ?, ?)",
        [instance.id, instance.version.name, instance.version.id, input_key],
    )

    if not instance.input_values:
        return 0

    df = _value_rows(instance.id, instance.input_values)
    conn.execute("INSERT INTO in_values (ex_instance_id, var_name, value) SELECT owner_id, var_name, value FROM df")
    return len(instance.input_values)


def insert_run(conn: duckdb.DuckDBPyConnection, run: ExperimentRun) -> int:
    """Insert a run row and its measurements.

    Returns:
        Number of measurements written
    """
    conn.execute(
        "INSERT INTO runs (id, ex_instance_id, date) VALUES (?, ?, ?)",
        [run.id, run.instance.id, to_naive_utc(run.recorded_at)],
    )

    if not run.measurements:
        return 0

    df = _value_rows(run.id, run.measurements)
    conn.execute("INSERT INTO measurements (run_id, var_name, value) SELECT owner_id, var_name, value FROM df")
    return len(run.measurements)


# ============================================================================
# Delete Operations
# ============================================================================
#
# Each function removes one layer of the hierarchy. Callers invoke them
# bottom-up: measurements, runs, input values, instances, variable links,
# versions, experiment.


def delete_measurements_of_runs(conn: duckdb.DuckDBPyConnection, run_ids: list[str]) -> None:
    if not run_ids:
        return
    placeholders = ", ".join("?" for _ in run_ids)
    conn.execute(f"DELETE FROM measurements WHERE run_id IN ({placeholders})", run_ids)


def delete_runs_by_id(conn: duckdb.DuckDBPyConnection, run_ids: list[str]) -> None:
    if not run_ids:
        return
    placeholders = ", ".join("?" for _ in run_ids)
    conn.execute(f"DELETE FROM runs WHERE id IN ({placeholders})", run_ids)


def delete_instance_rows(conn: duckdb.DuckDBPyConnection, instance_id: str) -> int:
    """Delete an instance with its runs, measurements and input values.

    Returns:
        Number of runs deleted
    """
    num_runs = conn.execute("SELECT COUNT(*) FROM runs WHERE ex_instance_id = ?", [instance_id]).fetchone()[0]
    conn.execute(
        "DELETE FROM measurements WHERE run_id IN (SELECT id FROM runs WHERE ex_instance_id = ?)",
        [instance_id],
    )
    conn.execute("DELETE FROM runs WHERE ex_instance_id = ?", [instance_id])
    conn.execute("DELETE FROM in_values WHERE ex_instance_id = ?", [instance_id])
    conn.execute("DELETE FROM experiment_instances WHERE id = ?", [instance_id])
    return num_runs


def delete_version_rows(conn: duckdb.DuckDBPyConnection, version_id: str) -> tuple[int, int]:
    """Delete a version with its instances and everything below them.

    Returns:
        Tuple of (instances deleted, runs deleted)
    """
    instance_ids = [
        row[0]
        for row in conn.execute(
            "SELECT id FROM experiment_instances WHERE version_id = ?", [version_id]
        ).fetchall()
    ]
    num_runs = 0
    for instance_id in instance_ids:
        num_runs += delete_instance_rows(conn, instance_id)

    conn.execute("DELETE FROM experiment_variables WHERE ex_version_id = ?", [version_id])
    conn.execute("DELETE FROM experiment_versions WHERE id = ?", [version_id])
    return len(instance_ids), num_runs


def delete_experiment_row(conn: duckdb.DuckDBPyConnection, name: str) -> None:
    conn.execute("DELETE FROM experiments WHERE name = ?", [name])
