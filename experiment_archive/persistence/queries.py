"""
Read Queries

Row-level reads used by the resolvers, the deleter and the repository. All
functions take an open connection so they can run inside the caller's
transaction; none of them write.

Rows are returned as plain tuples; ``get_run_counts`` returns a Polars
DataFrame for the listing commands.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import duckdb
import polars as pl

from .models import ALL_RECORDS

Row = tuple[Any, ...]

_VERSION_COLUMNS = "id, name, version_tag, created_at, description, researchers"


# ============================================================================
# Experiments & Versions
# ============================================================================


def select_experiment_names(conn: duckdb.DuckDBPyConnection) -> list[str]:
    """All registered experiment names, sorted."""
    rows = conn.execute("SELECT name FROM experiments ORDER BY name").fetchall()
    return [row[0] for row in rows]


def select_versions_by_name(conn: duckdb.DuckDBPyConnection, name: str) -> list[Row]:
    """All versions of an experiment, oldest first."""
    return conn.execute(
        f"""
        SELECT {_VERSION_COLUMNS}
        FROM experiment_versions
        WHERE name = ?
        ORDER BY created_at, id
        """,
        [name],
    ).fetchall()


def select_latest_version(conn: duckdb.DuckDBPyConnection, name: str) -> Row | None:
    """Most recently created version of an experiment, if any."""
    return conn.execute(
        f"""
        SELECT {_VERSION_COLUMNS}
        FROM experiment_versions
        WHERE name = ?
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        [name],
    ).fetchone()


def select_versions_by_tag(conn: duckdb.DuckDBPyConnection, name: str, version_tag: str) -> list[Row]:
    """Versions of an experiment built from one version tag, newest first."""
    return conn.execute(
        f"""
        SELECT {_VERSION_COLUMNS}
        FROM experiment_versions
        WHERE name = ? AND version_tag = ?
        ORDER BY created_at DESC, id DESC
        """,
        [name, version_tag],
    ).fetchall()


def select_versions_by_id(conn: duckdb.DuckDBPyConnection, version_id: str) -> list[Row]:
    """Versions with the given id (at most one in a consistent store)."""
    return conn.execute(
        f"SELECT {_VERSION_COLUMNS} FROM experiment_versions WHERE id = ?",
        [version_id],
    ).fetchall()


def select_version_ids_by_name(conn: duckdb.DuckDBPyConnection, name: str) -> list[str]:
    rows = conn.execute("SELECT id FROM experiment_versions WHERE name = ?", [name]).fetchall()
    return [row[0] for row in rows]


def select_version_variables(conn: duckdb.DuckDBPyConnection, version_id: str) -> list[Row]:
    """Variables linked to a version.

    Returns:
        Rows of (link var_name, kind, catalog name, description, type). The
        catalog columns are NULL when the variable row is missing.
    """
    return conn.execute(
        """
        SELECT ev.var_name, ev.kind, v.name, v.description, v.type
        FROM experiment_variables ev
        LEFT JOIN variables v ON v.name = ev.var_name
        WHERE ev.ex_version_id = ?
        ORDER BY ev.var_name
        """,
        [version_id],
    ).fetchall()


# ============================================================================
# Variables
# ============================================================================


def select_variables(conn: duckdb.DuckDBPyConnection, names: list[str]) -> list[Row]:
    """Catalog rows (name, description, type) for the given names."""
    if not names:
        return []
    placeholders = ", ".join("?" for _ in names)
    return conn.execute(
        f"SELECT name, description, type FROM variables WHERE name IN ({placeholders})",
        names,
    ).fetchall()


# ============================================================================
# Instances
# ============================================================================


def select_instances_of_version(conn: duckdb.DuckDBPyConnection, version_id: str) -> list[Row]:
    """Instance rows (id, version_id) of a version, by id."""
    return conn.execute(
        "SELECT id, version_id FROM experiment_instances WHERE version_id = ? ORDER BY id",
        [version_id],
    ).fetchall()


def select_instances_by_id(conn: duckdb.DuckDBPyConnection, instance_id: str) -> list[Row]:
    return conn.execute(
        "SELECT id, version_id FROM experiment_instances WHERE id = ?",
        [instance_id],
    ).fetchall()


def select_input_values_of_version(conn: duckdb.DuckDBPyConnection, version_id: str) -> list[Row]:
    """Input value rows (ex_instance_id, var_name, value) of every instance of a version."""
    return conn.execute(
        """
        SELECT iv.ex_instance_id, iv.var_name, iv.value
        FROM in_values iv
        JOIN experiment_instances ei ON ei.id = iv.ex_instance_id
        WHERE ei.version_id = ?
        """,
        [version_id],
    ).fetchall()


def select_input_values_of_instance(conn: duckdb.DuckDBPyConnection, instance_id: str) -> list[Row]:
    return conn.execute(
        "SELECT ex_instance_id, var_name, value FROM in_values WHERE ex_instance_id = ?",
        [instance_id],
    ).fetchall()


# ============================================================================
# Runs
# ============================================================================


def select_runs_of_instance(
    conn: duckdb.DuckDBPyConnection,
    instance_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Row]:
    """Run rows (id, date) of an instance in run-number order.

    Args:
        conn: DuckDB connection
        instance_id: Experiment instance identifier
        start: Inclusive lower bound on the run date (naive UTC)
        end: Exclusive upper bound on the run date (naive UTC)
    """
    sql = "SELECT id, date FROM runs WHERE ex_instance_id = ?"
    params: list[Any] = [instance_id]
    if start is not None:
        sql += " AND date >= ?"
        params.append(start)
    if end is not None:
        sql += " AND date < ?"
        params.append(end)
    sql += " ORDER BY date, id"
    return conn.execute(sql, params).fetchall()


def select_measurements_of_instance(conn: duckdb.DuckDBPyConnection, instance_id: str) -> list[Row]:
    """Measurement rows (run_id, var_name, value) of every run of an instance."""
    return conn.execute(
        """
        SELECT m.run_id, m.var_name, m.value
        FROM measurements m
        JOIN runs r ON r.id = m.run_id
        WHERE r.ex_instance_id = ?
        """,
        [instance_id],
    ).fetchall()


def get_run_counts(conn: duckdb.DuckDBPyConnection, version_id: str) -> pl.DataFrame:
    """Count runs per instance of a version.

    Returns:
        Polars DataFrame with columns:
        - instance_id: Experiment instance identifier
        - num_runs: Number of recorded runs
        - last_run: Date of the latest run (null without runs)
    """
    query = """
        SELECT
            ei.id AS instance_id,
            COUNT(r.id) AS num_runs,
            MAX(r.date) AS last_run
        FROM experiment_instances ei
        LEFT JOIN runs r ON r.ex_instance_id = ei.id
        WHERE ei.version_id = ?
        GROUP BY ei.id
        ORDER BY ei.id
    """
    return conn.execute(query, [version_id]).pl()


# ============================================================================
# Store Overview
# ============================================================================


def count_rows(conn: duckdb.DuckDBPyConnection) -> dict[str, int]:
    """Row count of every archive table."""
    counts = {}
    for model in ALL_RECORDS:
        table_name = model.model_config["table_name"]
        counts[table_name] = conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
    return counts
