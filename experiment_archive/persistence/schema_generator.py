"""
DDL Generation from Pydantic Models

Generates CREATE TABLE and CREATE INDEX statements from the record models in
``persistence.models`` so the database schema stays in sync with them.

Supported ``model_config`` keys:
- ``table_name``: name of the table (required)
- ``primary_key``: list of primary key columns
- ``unique``: list of column lists, one UNIQUE constraint each
- ``indexes``: list of ``(index_name, columns)`` tuples
"""

import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Type, get_args, get_origin

from pydantic import BaseModel

# ============================================================================
# Type Mapping
# ============================================================================

PYTHON_TO_SQL_TYPE_MAP = {
    str: "VARCHAR",
    int: "BIGINT",
    float: "DOUBLE",
    bool: "BOOLEAN",
    datetime: "TIMESTAMP",
}


def python_type_to_sql_type(py_type: Any) -> str:
    """Convert Python type annotation to SQL type.

    Args:
        py_type: Python type annotation (can be Optional, Enum, etc.)

    Returns:
        SQL type string (VARCHAR, BIGINT, etc.)

    Examples:
        >>> python_type_to_sql_type(str)
        'VARCHAR'
        >>> python_type_to_sql_type(datetime)
        'TIMESTAMP'
        >>> python_type_to_sql_type(int | None)
        'BIGINT'
    """
    # Optional[X] / X | None: use the first non-None member
    args = get_args(py_type)
    if get_origin(py_type) is not None and args:
        for arg in args:
            if arg is not type(None):
                py_type = arg
                break

    if inspect.isclass(py_type) and issubclass(py_type, Enum):
        return "VARCHAR"

    return PYTHON_TO_SQL_TYPE_MAP.get(py_type, "VARCHAR")


# ============================================================================
# DDL Generation
# ============================================================================


def _table_config(model: Type[BaseModel]) -> dict[str, Any]:
    config = getattr(model, "model_config", None)
    if config is None:
        raise ValueError(f"Model {model.__name__} missing model_config attribute")
    if "table_name" not in config:
        raise ValueError(f"Model {model.__name__} missing model_config['table_name']")
    return dict(config)


def generate_create_table_ddl(model: Type[BaseModel]) -> str:
    """Generate CREATE TABLE DDL from Pydantic model.

    Args:
        model: Pydantic model class with model_config["table_name"]

    Returns:
        SQL CREATE TABLE statement

    Raises:
        ValueError: If model is missing required configuration

    Examples:
        >>> from experiment_archive.persistence.models import ExperimentInstanceRecord
        >>> ddl = generate_create_table_ddl(ExperimentInstanceRecord)
        >>> "UNIQUE (version_id, input_key)" in ddl
        True
    """
    config = _table_config(model)
    table_name = config["table_name"]

    columns = []
    for field_name, field_info in model.model_fields.items():
        py_type = field_info.annotation
        sql_type = python_type_to_sql_type(py_type)
        null_constraint = "" if _is_field_optional(py_type, field_info) else " NOT NULL"
        columns.append(f"    {field_name} {sql_type}{null_constraint}")

    primary_key = config.get("primary_key") or []
    if primary_key:
        columns.append(f"    PRIMARY KEY ({', '.join(primary_key)})")

    for unique_columns in config.get("unique") or []:
        columns.append(f"    UNIQUE ({', '.join(unique_columns)})")

    ddl = f"CREATE TABLE IF NOT EXISTS {table_name} (\n"
    ddl += ",\n".join(columns)
    ddl += "\n);"

    return ddl


def generate_create_indexes_ddl(model: Type[BaseModel]) -> list[str]:
    """Generate CREATE INDEX statements from Pydantic model.

    Args:
        model: Pydantic model class with model_config["indexes"]

    Returns:
        List of SQL CREATE INDEX statements (empty if the model has none)
    """
    config = _table_config(model)
    table_name = config["table_name"]

    return [
        f"CREATE INDEX IF NOT EXISTS {index_name} ON {table_name} ({', '.join(columns)});"
        for index_name, columns in config.get("indexes") or []
    ]


def generate_full_schema_ddl() -> str:
    """Generate complete schema DDL for all record models.

    Returns:
        SQL DDL for all tables and their indexes

    Examples:
        >>> ddl = generate_full_schema_ddl()
        >>> "CREATE TABLE IF NOT EXISTS measurements" in ddl
        True
    """
    from .models import ALL_RECORDS

    ddl_parts = []
    for model in ALL_RECORDS:
        ddl_parts.append(generate_create_table_ddl(model))
        ddl_parts.extend(generate_create_indexes_ddl(model))

    return "\n\n".join(ddl_parts)


# ============================================================================
# Helper Functions
# ============================================================================


def _is_field_optional(py_type: Any, field_info: Any) -> bool:
    """Check if a field is optional (nullable).

    Args:
        py_type: Field type annotation
        field_info: Pydantic FieldInfo object

    Returns:
        True if field can be None
    """
    if get_origin(py_type) is not None and type(None) in get_args(py_type):
        return True

    # Required fields use Ellipsis; only an explicit None default is nullable
    return field_info.default is None


# ============================================================================
# Schema Validation
# ============================================================================


def validate_table_schema(conn: Any, model: Type[BaseModel]) -> tuple[bool, list[str]]:
    """Validate that database table schema matches Pydantic model.

    Checks column names and column types.

    Args:
        conn: DuckDB connection
        model: Pydantic model to validate against

    Returns:
        Tuple of (is_valid, list of error messages)

    Examples:
        >>> import duckdb
        >>> from experiment_archive.persistence.models import RunRecord
        >>> conn = duckdb.connect(":memory:")
        >>> validate_table_schema(conn, RunRecord)[0]
        False
    """
    try:
        config = _table_config(model)
    except ValueError as e:
        return False, [str(e)]

    table_name = config["table_name"]
    errors = []

    # DESCRIBE treats some table names (e.g. "variables") as keywords
    result = conn.execute(
        """
        SELECT column_name, data_type
        FROM information_schema.columns
        WHERE table_catalog = current_database()
          AND table_schema = 'main'
          AND table_name = ?
        ORDER BY ordinal_position
        """,
        [table_name],
    ).fetchall()
    if not result:
        return False, [f"Table {table_name} does not exist"]

    db_columns = {row[0]: row[1] for row in result}
    model_fields = model.model_fields

    for column in sorted(set(model_fields) - set(db_columns)):
        errors.append(f"Column '{column}' missing from table {table_name}")

    extra_columns = set(db_columns) - set(model_fields)
    if extra_columns:
        errors.append(f"Unexpected columns in {table_name}: {sorted(extra_columns)}")

    for column in sorted(set(model_fields) & set(db_columns)):
        expected = python_type_to_sql_type(model_fields[column].annotation)
        if db_columns[column] != expected:
            errors.append(
                f"Column '{column}' in {table_name} has type {db_columns[column]}, expected {expected}"
            )

    return len(errors) == 0, errors


def list_tables(conn: Any) -> set[str]:
    """Names of the tables in the main schema of the current database."""
    rows = conn.execute(
        """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_catalog = current_database() AND table_schema = 'main'
        """
    ).fetchall()
    return {row[0] for row in rows}
