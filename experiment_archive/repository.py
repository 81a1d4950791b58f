"""Entity loading.

Builds ExperimentVersion, ExperimentInstance and ExperimentRun entities from
store rows. The ``load_*`` functions take an open connection so the
resolvers and the deleter can use them inside their own transaction;
ArchiveRepository wraps them into the public read queries.

Every loader checks the stored shape: a missing variable, a value that no
longer parses or a duplicated id raises ConsistencyError.
"""

from __future__ import annotations

import json
from collections import defaultdict
from datetime import datetime
from typing import Any

import duckdb

from .errors import ArchiveValidationError, ConsistencyError
from .ids import from_naive_utc, to_naive_utc
from .models import ExperimentInstance, ExperimentRun, ExperimentVersion, make_assignment
from .persistence import queries
from .persistence.connection import DatabaseManager
from .persistence.models import VariableKind
from .variables import DataType, Variable

# =============================================================================
# Row Conversion
# =============================================================================


def _row_to_variable(row: tuple[Any, ...], version_id: str) -> Variable:
    link_name, _kind, name, description, type_json = row
    if name is None:
        raise ConsistencyError(f"Variable {link_name} of version {version_id} is missing from the catalog")
    try:
        data_type = DataType.from_json(type_json)
    except ValueError as e:
        raise ConsistencyError(f"Variable {name} has an invalid stored type: {e}") from e
    return Variable(name=name, description=description, data_type=data_type)


def _row_to_version(conn: duckdb.DuckDBPyConnection, row: tuple[Any, ...]) -> ExperimentVersion:
    version_id, name, version_tag, created_at, description, researchers_json = row

    inputs: set[Variable] = set()
    outputs: set[Variable] = set()
    for var_row in queries.select_version_variables(conn, version_id):
        variable = _row_to_variable(var_row, version_id)
        if var_row[1] == VariableKind.INPUT.value:
            inputs.add(variable)
        else:
            outputs.add(variable)

    try:
        researchers = frozenset(json.loads(researchers_json))
    except (TypeError, json.JSONDecodeError) as e:
        raise ConsistencyError(f"Version {version_id} has invalid researchers: {researchers_json!r}") from e

    return ExperimentVersion(
        id=version_id,
        name=name,
        version_tag=version_tag,
        created_at=from_naive_utc(created_at),
        description=description,
        researchers=researchers,
        input_variables=frozenset(inputs),
        output_variables=frozenset(outputs),
    )


def _parse_assignment(
    owner: str,
    variables: frozenset[Variable],
    rows: list[tuple[str, str]],
):
    """Turn (var_name, text) rows into an assignment covering ``variables`` exactly."""
    by_name = {variable.name: variable for variable in variables}
    pairs = []
    for var_name, text in rows:
        variable = by_name.pop(var_name, None)
        if variable is None:
            raise ConsistencyError(f"{owner} has a value for unknown or repeated variable {var_name}")
        try:
            pairs.append((variable, variable.parse(text)))
        except ArchiveValidationError as e:
            raise ConsistencyError(f"{owner} has an unparseable stored value: {e}") from e
    if by_name:
        raise ConsistencyError(f"{owner} has no value for {', '.join(sorted(by_name))}")
    return make_assignment(pairs)


def _single(rows: list[tuple[Any, ...]], kind: str, entity_id: str) -> tuple[Any, ...] | None:
    if len(rows) > 1:
        raise ConsistencyError(f"Found {len(rows)} {kind} rows with id {entity_id}")
    return rows[0] if rows else None


# =============================================================================
# Loaders (run inside the caller's transaction)
# =============================================================================


def load_versions(conn: duckdb.DuckDBPyConnection, name: str) -> list[ExperimentVersion]:
    return [_row_to_version(conn, row) for row in queries.select_versions_by_name(conn, name)]


def load_latest_version(conn: duckdb.DuckDBPyConnection, name: str) -> ExperimentVersion | None:
    row = queries.select_latest_version(conn, name)
    return _row_to_version(conn, row) if row is not None else None


def load_version(conn: duckdb.DuckDBPyConnection, version_id: str) -> ExperimentVersion | None:
    row = _single(queries.select_versions_by_id(conn, version_id), "version", version_id)
    return _row_to_version(conn, row) if row is not None else None


def load_instances(conn: duckdb.DuckDBPyConnection, version: ExperimentVersion) -> list[ExperimentInstance]:
    values: dict[str, list[tuple[str, str]]] = defaultdict(list)
    for instance_id, var_name, text in queries.select_input_values_of_version(conn, version.id):
        values[instance_id].append((var_name, text))

    return [
        ExperimentInstance(
            id=instance_id,
            version=version,
            input_values=_parse_assignment(
                f"Instance {instance_id}", version.input_variables, values.get(instance_id, [])
            ),
        )
        for instance_id, _version_id in queries.select_instances_of_version(conn, version.id)
    ]


def load_instance(conn: duckdb.DuckDBPyConnection, instance_id: str) -> ExperimentInstance | None:
    row = _single(queries.select_instances_by_id(conn, instance_id), "instance", instance_id)
    if row is None:
        return None

    version = load_version(conn, row[1])
    if version is None:
        raise ConsistencyError(f"Instance {instance_id} references missing version {row[1]}")

    rows = [(var_name, text) for _, var_name, text in queries.select_input_values_of_instance(conn, instance_id)]
    return ExperimentInstance(
        id=instance_id,
        version=version,
        input_values=_parse_assignment(f"Instance {instance_id}", version.input_variables, rows),
    )


def load_runs(
    conn: duckdb.DuckDBPyConnection,
    instance: ExperimentInstance,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ExperimentRun]:
    """Runs of an instance in run-number order, optionally within ``[start, end)``."""
    run_rows = queries.select_runs_of_instance(
        conn,
        instance.id,
        to_naive_utc(start) if start is not None else None,
        to_naive_utc(end) if end is not None else None,
    )
    if not run_rows:
        return []

    values: dict[str, list[tuple[str, str]]] = defaultdict(list)
    for run_id, var_name, text in queries.select_measurements_of_instance(conn, instance.id):
        values[run_id].append((var_name, text))

    outputs = instance.version.output_variables
    return [
        ExperimentRun(
            id=run_id,
            instance=instance,
            recorded_at=from_naive_utc(date),
            measurements=_parse_assignment(f"Run {run_id}", outputs, values.get(run_id, [])),
        )
        for run_id, date in run_rows
    ]


def load_catalog_variables(conn: duckdb.DuckDBPyConnection, names: list[str]) -> dict[str, Variable]:
    """Catalog definitions for the given variable names that exist."""
    catalog = {}
    for name, description, type_json in queries.select_variables(conn, names):
        try:
            data_type = DataType.from_json(type_json)
        except ValueError as e:
            raise ConsistencyError(f"Variable {name} has an invalid stored type: {e}") from e
        catalog[name] = Variable(name=name, description=description, data_type=data_type)
    return catalog


# =============================================================================
# Repository
# =============================================================================


class ArchiveRepository:
    """Read queries over a store.

    Each method holds the store exclusively for its duration and returns
    fully formed entities. Nothing is cached between calls.

    Example:
        >>> repo = ArchiveRepository(db_manager)
        >>> version = repo.fetch_latest_version_by_name("E")
        >>> instances = repo.fetch_all_instances_of_version(version)
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    def fetch_experiments(self) -> list[str]:
        """All experiment names, sorted."""
        with self._db.session("fetch experiments") as conn:
            return queries.select_experiment_names(conn)

    def fetch_all_versions_by_name(self, name: str) -> list[ExperimentVersion]:
        """All versions of an experiment, oldest first."""
        with self._db.session("fetch versions", name) as conn:
            return load_versions(conn, name)

    def fetch_latest_version_by_name(self, name: str) -> ExperimentVersion | None:
        with self._db.session("fetch latest version", name) as conn:
            return load_latest_version(conn, name)

    def fetch_specific_version(self, name: str, version_tag: str) -> ExperimentVersion | None:
        """Newest version of ``name`` created from ``version_tag``."""
        with self._db.session("fetch version", f"{name} ({version_tag})") as conn:
            rows = queries.select_versions_by_tag(conn, name, version_tag)
            return _row_to_version(conn, rows[0]) if rows else None

    def fetch_version_by_id(self, version_id: str) -> ExperimentVersion | None:
        with self._db.session("fetch version", version_id) as conn:
            return load_version(conn, version_id)

    def fetch_version_from_instance_id(self, instance_id: str) -> ExperimentVersion | None:
        instance = self.fetch_instance_by_id(instance_id)
        return instance.version if instance is not None else None

    def fetch_all_instances_of_version(self, version: ExperimentVersion) -> list[ExperimentInstance]:
        with self._db.session("fetch instances", version.id) as conn:
            return load_instances(conn, version)

    def fetch_instance_by_id(self, instance_id: str) -> ExperimentInstance | None:
        with self._db.session("fetch instance", instance_id) as conn:
            return load_instance(conn, instance_id)

    def fetch_specific_instance(
        self, version: ExperimentVersion, input_values: dict[str, Any]
    ) -> ExperimentInstance | None:
        """Instance of ``version`` whose input assignment equals ``input_values``.

        Values are compared after coercion to the variables' types, so
        ``{"x": 1}`` finds an instance stored with ``x = 1.0``. Unknown or
        mistyped names simply match nothing.
        """
        pairs = []
        for name, value in input_values.items():
            variable = version.input_variable(name)
            if variable is None:
                return None
            try:
                pairs.append((variable, variable.coerce(value)))
            except ArchiveValidationError:
                return None
        assignment = make_assignment(pairs)

        for instance in self.fetch_all_instances_of_version(version):
            if instance.has_assignment(assignment):
                return instance
        return None

    def fetch_all_runs_of_instance(self, instance: ExperimentInstance) -> list[ExperimentRun]:
        """All runs of an instance in run-number order."""
        with self._db.session("fetch runs", instance.id) as conn:
            return load_runs(conn, instance)

    def fetch_runs_in_date_range(
        self, instance: ExperimentInstance, start: datetime, end: datetime
    ) -> list[ExperimentRun]:
        """Runs recorded in ``[start, end)``."""
        with self._db.session("fetch runs", instance.id) as conn:
            return load_runs(conn, instance, start, end)

    def count_rows(self) -> dict[str, int]:
        with self._db.session("count rows") as conn:
            return queries.count_rows(conn)
