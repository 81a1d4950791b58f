"""
Persistence layer: DDL generated from the record models, schema validation
and DatabaseManager transactions.
"""

import duckdb
import pytest

from experiment_archive.errors import StoreError
from experiment_archive.persistence.connection import DatabaseManager, open_database
from experiment_archive.persistence.models import (
    ALL_RECORDS,
    ExperimentInstanceRecord,
    ExperimentVariableRecord,
    InputValueRecord,
    RunRecord,
    VariableRecord,
)
from experiment_archive.persistence.schema_generator import (
    generate_create_table_ddl,
    generate_full_schema_ddl,
    list_tables,
    python_type_to_sql_type,
    validate_table_schema,
)


class TestDDLGeneration:
    """CREATE TABLE statements follow the record models."""

    def test_types(self):
        from datetime import datetime

        from experiment_archive.persistence.models import VariableKind

        assert python_type_to_sql_type(str) == "VARCHAR"
        assert python_type_to_sql_type(datetime) == "TIMESTAMP"
        assert python_type_to_sql_type(int | None) == "BIGINT"
        assert python_type_to_sql_type(VariableKind) == "VARCHAR"

    def test_primary_key_and_not_null(self):
        ddl = generate_create_table_ddl(RunRecord)

        assert ddl.startswith("CREATE TABLE IF NOT EXISTS runs (")
        assert "date TIMESTAMP NOT NULL" in ddl
        assert "PRIMARY KEY (id)" in ddl

    def test_composite_key(self):
        assert "PRIMARY KEY (ex_instance_id, var_name)" in generate_create_table_ddl(InputValueRecord)

    def test_unique_constraints(self):
        assert "UNIQUE (version_id, input_key)" in generate_create_table_ddl(ExperimentInstanceRecord)
        assert "UNIQUE (var_name, ex_version_id)" in generate_create_table_ddl(ExperimentVariableRecord)

    def test_full_schema_covers_all_tables(self):
        ddl = generate_full_schema_ddl()

        for model in ALL_RECORDS:
            assert f"CREATE TABLE IF NOT EXISTS {model.model_config['table_name']} (" in ddl
        assert "FOREIGN KEY" not in ddl

    def test_model_without_table_name(self):
        from pydantic import BaseModel

        class Unmapped(BaseModel):
            name: str

        with pytest.raises(ValueError):
            generate_create_table_ddl(Unmapped)


class TestSchemaValidation:
    """validate_table_schema compares columns and their types."""

    def test_initialized_schema_is_valid(self, db_manager):
        assert db_manager.is_initialized()
        assert db_manager.validate_schema()

    def test_missing_table(self):
        conn = duckdb.connect(":memory:")

        is_valid, errors = validate_table_schema(conn, RunRecord)

        assert not is_valid
        assert "does not exist" in errors[0]

    def test_column_mismatch(self):
        conn = duckdb.connect(":memory:")
        conn.execute("CREATE TABLE runs (id VARCHAR, ex_instance_id VARCHAR, date VARCHAR, extra INTEGER)")

        is_valid, errors = validate_table_schema(conn, RunRecord)

        assert not is_valid
        assert any("Unexpected columns" in error for error in errors)
        assert any("'date'" in error and "TIMESTAMP" in error for error in errors)

    def test_table_named_like_a_keyword(self):
        conn = duckdb.connect(":memory:")
        conn.execute(generate_create_table_ddl(VariableRecord))

        assert validate_table_schema(conn, VariableRecord) == (True, [])

    def test_list_tables(self, db_manager):
        with db_manager.session() as conn:
            assert list_tables(conn) == {model.model_config["table_name"] for model in ALL_RECORDS}

    def test_setup_rejects_outdated_schema(self, db_path):
        conn = duckdb.connect(str(db_path))
        conn.execute("CREATE TABLE runs (id VARCHAR PRIMARY KEY)")
        conn.close()

        with pytest.raises(StoreError, match="schema validation failed"):
            open_database(db_path)

        # Rejected before any DDL ran
        conn = duckdb.connect(str(db_path))
        assert list_tables(conn) == {"runs"}
        conn.close()

    def test_initialize_is_idempotent(self, db_manager, row_count):
        db_manager.conn.execute("INSERT INTO experiments VALUES ('E')")

        db_manager.initialize_schema()
        assert row_count("experiments") == 1

        db_manager.initialize_schema(force_recreate=True)
        assert row_count("experiments") == 0

    def test_read_only_database(self, db_path):
        open_database(db_path).close()

        with DatabaseManager(db_path, read_only=True) as manager:
            manager.setup()
            assert manager.is_initialized()


class TestTransactions:
    """transaction() commits, rolls back and wraps driver errors."""

    def test_commit(self, db_manager, row_count):
        with db_manager.transaction("insert", "E") as conn:
            conn.execute("INSERT INTO experiments VALUES ('E')")

        assert row_count("experiments") == 1

    def test_rollback_on_python_error(self, db_manager, row_count):
        with pytest.raises(RuntimeError):
            with db_manager.transaction("insert", "E") as conn:
                conn.execute("INSERT INTO experiments VALUES ('E')")
                raise RuntimeError("abort")

        assert row_count("experiments") == 0

    def test_driver_error_becomes_store_error(self, db_manager, row_count):
        with pytest.raises(StoreError) as exc_info:
            with db_manager.transaction("register experiment", "E") as conn:
                conn.execute("INSERT INTO experiments VALUES ('E')")
                conn.execute("INSERT INTO experiments VALUES ('E')")

        assert "register experiment" in str(exc_info.value)
        assert "E" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, duckdb.ConstraintException)
        assert row_count("experiments") == 0

    def test_nested_transaction_joins_outer(self, db_manager, row_count):
        with pytest.raises(RuntimeError):
            with db_manager.transaction("outer") as conn:
                with db_manager.transaction("inner") as inner:
                    inner.execute("INSERT INTO experiments VALUES ('inner')")
                conn.execute("INSERT INTO experiments VALUES ('outer')")
                raise RuntimeError("abort")

        assert row_count("experiments") == 0

    def test_execute_and_query(self, db_manager):
        db_manager.execute("INSERT INTO experiments VALUES (?)", ["E"])

        assert db_manager.query("SELECT name FROM experiments WHERE name = ?", ["E"]) == [("E",)]

    def test_session_wraps_driver_errors(self, db_manager):
        with pytest.raises(StoreError, match="read things"):
            with db_manager.session("read things") as conn:
                conn.execute("SELECT * FROM no_such_table")

    def test_unopenable_database(self, tmp_path):
        directory = tmp_path / "a_directory"
        directory.mkdir()

        with pytest.raises(StoreError):
            DatabaseManager(directory)
