"""
Pytest configuration and shared fixtures.

Provides:
- in-memory and file-backed DuckDB stores with the archive schema
- an ExperimentArchive bound to the in-memory store
- isolation from the user's EXAR_* environment and CLI configuration
"""

from pathlib import Path
from typing import Generator

import pytest

from experiment_archive.archive import ExperimentArchive
from experiment_archive.config import ArchiveSettings
from experiment_archive.persistence.connection import DatabaseManager
from experiment_archive.variables import DataType, Variable

TEST_VERSION_TAG = "build test"


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from the real configuration file and EXAR_* settings."""
    for name in ("EXAR_DB_PATH", "EXAR_LOCAL", "EXAR_VERSION_TAG", "EXAR_STRICT_VARIABLES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("EXAR_CONFIG_PATH", str(tmp_path / "config" / "config.yaml"))
    monkeypatch.setenv("EXAR_VERSION_TAG", TEST_VERSION_TAG)


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Path for a file-backed test database."""
    return tmp_path / "archive.db"


@pytest.fixture
def db_manager() -> Generator[DatabaseManager, None, None]:
    """In-memory store with the archive schema."""
    manager = DatabaseManager(":memory:")
    manager.setup()
    yield manager
    manager.close()


@pytest.fixture
def archive(db_manager) -> ExperimentArchive:
    """Archive on the in-memory store with a fixed version tag."""
    return ExperimentArchive(db_manager, ArchiveSettings(version_tag=TEST_VERSION_TAG))


@pytest.fixture
def x_label() -> Variable:
    return Variable("X", "Input label", DataType.label())


@pytest.fixture
def y_number() -> Variable:
    return Variable("Y", "Output number", DataType.number())


@pytest.fixture
def row_count(db_manager):
    """Count the rows of a table in the in-memory store."""

    def count(table: str) -> int:
        return db_manager.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    return count
