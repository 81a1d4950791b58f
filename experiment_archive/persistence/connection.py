"""
DuckDB Connection Manager

Manages the database connection, schema initialization and validation, and
gives the archive components exclusive, transactional access to the store.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb

from ..errors import StoreError
from .models import ALL_RECORDS
from .schema_generator import generate_full_schema_ddl, list_tables, validate_table_schema

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages DuckDB connection and schema.

    Responsibilities:
    - Create and manage the DuckDB connection
    - Initialize database schema from Pydantic models
    - Validate schema matches models
    - Hold the connection exclusively for one logical operation
    - Run each logical operation in one transaction

    Usage:
        with DatabaseManager("experiments.db") as manager:
            manager.setup()
            with manager.transaction("register experiment", "E") as conn:
                conn.execute("INSERT INTO experiments VALUES (?)", ["E"])

    Errors raised by DuckDB inside ``transaction()`` and ``session()`` are
    re-raised as StoreError naming the operation and entity, with the driver
    error chained.
    """

    def __init__(self, db_path: str | Path = "experiments.db", read_only: bool = False):
        """Initialize database manager.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
            read_only: Open the database file read-only

        Raises:
            StoreError: If the database cannot be opened (e.g. locked by another process)
        """
        self.db_path = str(db_path)
        self.read_only = read_only
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = duckdb.connect(self.db_path, read_only=read_only)
        except duckdb.Error as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}") from e

        self._lock = threading.RLock()
        self._depth = 0

    # ------------------------------------------------------------------------
    # Exclusive access
    # ------------------------------------------------------------------------

    @contextmanager
    def session(self, operation: str = "query", entity: str | None = None) -> Iterator[duckdb.DuckDBPyConnection]:
        """Hold the connection exclusively without opening a transaction.

        Args:
            operation: Name of the logical operation, for error messages
            entity: Identifier of the entity involved, for error messages
        """
        with self._lock:
            try:
                yield self.conn
            except duckdb.Error as e:
                raise _store_error(operation, entity, e) from e

    @contextmanager
    def transaction(
        self, operation: str = "transaction", entity: str | None = None
    ) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run a block inside one store transaction.

        Commits when the block completes, rolls back when it raises. A
        transaction opened while one is already active on this thread joins
        the outer transaction.

        Args:
            operation: Name of the logical operation, for error messages
            entity: Identifier of the entity involved, for error messages

        Raises:
            StoreError: If DuckDB fails anywhere in the block or on commit

        Examples:
            >>> with manager.transaction("delete instance", instance.id) as conn:
            ...     conn.execute("DELETE FROM runs WHERE ex_instance_id = ?", [instance.id])
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self.conn
                finally:
                    self._depth -= 1
                return

            try:
                self.conn.begin()
            except duckdb.Error as e:
                raise _store_error(operation, entity, e) from e

            self._depth = 1
            try:
                yield self.conn
                self.conn.commit()
            except BaseException as e:
                self._rollback(operation)
                if isinstance(e, duckdb.Error):
                    raise _store_error(operation, entity, e) from e
                raise
            finally:
                self._depth = 0

    def _rollback(self, operation: str) -> None:
        try:
            self.conn.rollback()
        except duckdb.Error as e:
            # Commit failures already end the transaction
            logger.debug("Rollback after failed %s: %s", operation, e)

    # ------------------------------------------------------------------------
    # Convenience statements
    # ------------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple[Any, ...]]:
        """Run a read query and return all rows."""
        with self.session("query") as conn:
            return conn.execute(sql, params or []).fetchall()

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        """Run a single statement in its own transaction."""
        with self.transaction("execute") as conn:
            conn.execute(sql, params or [])

    # ------------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------------

    def initialize_schema(self, force_recreate: bool = False) -> None:
        """Initialize database schema from Pydantic models.

        Uses CREATE TABLE IF NOT EXISTS, so safe to run multiple times.

        Args:
            force_recreate: If True, drop existing tables before recreating them
        """
        logger.info("Initializing database schema at %s", self.db_path)

        with self.transaction("initialize schema", self.db_path) as conn:
            if force_recreate:
                logger.info("Dropping existing tables")
                for model in reversed(ALL_RECORDS):
                    conn.execute(f"DROP TABLE IF EXISTS {model.model_config['table_name']}")

            # DuckDB has no executescript, so split and execute individually
            ddl = generate_full_schema_ddl()
            for statement in (s.strip() for s in ddl.split(";")):
                if statement:
                    conn.execute(statement)

    def is_initialized(self) -> bool:
        """Check if every archive table exists."""
        with self.session("check schema") as conn:
            tables = list_tables(conn)
        return all(model.model_config["table_name"] in tables for model in ALL_RECORDS)

    def validate_schema(self, only_existing: bool = False) -> bool:
        """Validate that database schema matches Pydantic models.

        Args:
            only_existing: Skip tables that have not been created yet

        Returns:
            True if all tables valid, False if any mismatches found
        """
        all_valid = True
        with self.session("validate schema") as conn:
            tables = list_tables(conn)
            for model in ALL_RECORDS:
                table_name = model.model_config["table_name"]
                if only_existing and table_name not in tables:
                    continue
                is_valid, errors = validate_table_schema(conn, model)
                if is_valid:
                    logger.debug("Table %s is valid", table_name)
                    continue
                all_valid = False
                for error in errors:
                    logger.error("Schema mismatch in %s: %s", table_name, error)

        return all_valid

    def setup(self) -> None:
        """Initialize (unless read-only) and validate the schema.

        Tables left by an older schema are rejected before any DDL runs.

        Raises:
            StoreError: If schema validation fails
        """
        if not self.read_only:
            if not self.validate_schema(only_existing=True):
                raise self._outdated_schema()
            self.initialize_schema()

        if not self.validate_schema():
            raise self._outdated_schema()

    def _outdated_schema(self) -> StoreError:
        return StoreError(
            f"Database schema validation failed for {self.db_path}. "
            "The schema is out of sync with the record models; "
            "delete the database and reinitialize."
        )

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()

    def __enter__(self) -> DatabaseManager:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


def _store_error(operation: str, entity: str | None, error: duckdb.Error) -> StoreError:
    target = f" for {entity}" if entity else ""
    return StoreError(f"Failed to {operation}{target}: {error}")


# ============================================================================
# Convenience Functions
# ============================================================================


def open_database(db_path: str | Path, read_only: bool = False) -> DatabaseManager:
    """Open a database and make sure its schema is ready.

    Args:
        db_path: Path to DuckDB database file, or ":memory:"
        read_only: Open without creating tables

    Returns:
        Ready-to-use DatabaseManager

    Raises:
        StoreError: If the database cannot be opened or its schema is invalid
    """
    manager = DatabaseManager(db_path, read_only=read_only)
    try:
        manager.setup()
    except StoreError:
        manager.close()
        raise
    return manager
