"""
Experiment Archive Facade

Single entry point wiring the store to the resolvers, the run recorder, the
deleter and the read queries.

Usage:
    with ExperimentArchive.open() as archive:
        version = archive.declare(
            "sorting",
            description="Sort benchmark",
            researchers=["ada"],
            input_variables=[Variable("algorithm", "Sort algorithm", DataType.label())],
            output_variables=[Variable("time", "Runtime", DataType.with_unit("ms"))],
        )
        instance = archive.instance(version, {"algorithm": "quicksort"})
        archive.run(instance, lambda ctx: ctx.add_measurement("time", 12.5))

In local mode (``EXAR_LOCAL=1``) every call returns fresh entities and
nothing is stored.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .config import ArchiveSettings
from .deletion import CascadeDeleter, DeletionResult
from .errors import ArchiveValidationError, DeclarationError
from .instances import InstanceResolver
from .models import ExperimentInstance, ExperimentRun, ExperimentVersion
from .persistence.connection import DatabaseManager, open_database
from .repository import ArchiveRepository
from .runs import MeasurementAccumulator, RunRecorder
from .statistics import RunStatistics, aggregate_runs
from .variables import DataType, Variable
from .versioning import VersionResolver

logger = logging.getLogger(__name__)


# ============================================================================
# Declarations
# ============================================================================


def _variables_from_yaml(raw: Any, section: str) -> list[Variable]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise DeclarationError(f"'{section}' must be a list of variables")

    variables = []
    for item in raw:
        if not isinstance(item, dict) or "name" not in item or "data_type" not in item:
            raise DeclarationError(f"Each entry of '{section}' needs 'name' and 'data_type': {item!r}")
        try:
            data_type = DataType.from_raw(item["data_type"])
        except ValueError as e:
            raise DeclarationError(f"Variable {item['name']}: {e}") from e
        variables.append(
            Variable(name=str(item["name"]), description=str(item.get("description", "")), data_type=data_type)
        )
    return variables


def load_declaration(source: str | Path) -> dict[str, Any]:
    """Read an experiment declaration from a YAML file.

    Expected keys: ``name``, ``description``, ``researchers``,
    ``input_variables``, ``output_variables``. Data types are ``Number``,
    ``Label``, ``Text``, ``Bool`` or ``{unit: <unit>}``.

    Returns:
        Keyword arguments for ``ExperimentArchive.declare``

    Raises:
        DeclarationError: If the file is missing or malformed
    """
    path = Path(source)
    if not path.exists():
        raise DeclarationError(f"Declaration file not found: {path}")
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DeclarationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict) or not raw.get("name"):
        raise DeclarationError(f"Declaration {path} must be a mapping with a 'name'")

    researchers = raw.get("researchers") or []
    if isinstance(researchers, str):
        researchers = [researchers]

    return {
        "name": str(raw["name"]),
        "description": str(raw.get("description", "")),
        "researchers": [str(r) for r in researchers],
        "input_variables": _variables_from_yaml(raw.get("input_variables"), "input_variables"),
        "output_variables": _variables_from_yaml(raw.get("output_variables"), "output_variables"),
    }


# ============================================================================
# Archive
# ============================================================================


class ExperimentArchive:
    """Experiment archive bound to one store (or none, in local mode).

    Args:
        db_manager: Open store, or None for local mode
        settings: Version tag, strictness and logging options
    """

    def __init__(self, db_manager: DatabaseManager | None, settings: ArchiveSettings | None = None) -> None:
        self.settings = settings or ArchiveSettings(local=db_manager is None)
        self.db_manager = db_manager
        self._versions = VersionResolver(
            db_manager,
            version_tag=self.settings.version_tag,
            strict_variables=self.settings.strict_variables,
        )
        self._instances = InstanceResolver(db_manager)
        self._runs = RunRecorder(db_manager, log_runs=self.settings.log_runs)
        self._deleter = CascadeDeleter(db_manager)
        self._repository = ArchiveRepository(db_manager) if db_manager is not None else None

    @classmethod
    def open(cls, settings: ArchiveSettings | None = None) -> ExperimentArchive:
        """Open the archive described by settings (``EXAR_*`` environment by default)."""
        settings = settings or ArchiveSettings.from_env()
        if settings.local:
            logger.info("Local mode: experiments are not persisted")
            return cls(None, settings)
        return cls(open_database(settings.db_path), settings)

    @property
    def is_local(self) -> bool:
        return self.db_manager is None

    @property
    def version_tag(self) -> str:
        return self._versions.version_tag

    @property
    def repository(self) -> ArchiveRepository:
        if self._repository is None:
            raise ArchiveValidationError("No stored data to query: the archive runs in local mode")
        return self._repository

    def close(self) -> None:
        if self.db_manager is not None:
            self.db_manager.close()

    def __enter__(self) -> ExperimentArchive:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # ------------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------------

    def declare(
        self,
        name: str,
        description: str = "",
        researchers: Iterable[str] = (),
        input_variables: Iterable[Variable] = (),
        output_variables: Iterable[Variable] = (),
    ) -> ExperimentVersion:
        """Resolve an experiment declaration to its current version."""
        return self._versions.resolve(name, description, researchers, input_variables, output_variables)

    def declare_from_yaml(self, source: str | Path) -> ExperimentVersion:
        return self.declare(**load_declaration(source))

    def instance(self, version: ExperimentVersion, input_values: Mapping[str, Any]) -> ExperimentInstance:
        """Find or create the instance of ``version`` with ``input_values``."""
        return self._instances.resolve(version, input_values)

    def run(
        self,
        instance: ExperimentInstance,
        execute: Callable[[MeasurementAccumulator], Any],
    ) -> ExperimentRun:
        """Execute ``execute`` and record its measurements as a run of ``instance``."""
        return self._runs.record(instance, execute)

    # ------------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------------

    def delete_experiment(self, name: str) -> DeletionResult:
        return self._deleter.delete_experiment(name)

    def delete_version(self, version: ExperimentVersion) -> DeletionResult:
        return self._deleter.delete_version(version)

    def delete_instance(self, instance: ExperimentInstance) -> DeletionResult:
        return self._deleter.delete_instance(instance)

    def delete_runs(self, instance: ExperimentInstance, run_numbers: Iterable[int]) -> DeletionResult:
        return self._deleter.delete_runs(instance, run_numbers)

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def fetch_experiments(self) -> list[str]:
        return self.repository.fetch_experiments()

    def fetch_all_versions_by_name(self, name: str) -> list[ExperimentVersion]:
        return self.repository.fetch_all_versions_by_name(name)

    def fetch_latest_version_by_name(self, name: str) -> ExperimentVersion | None:
        return self.repository.fetch_latest_version_by_name(name)

    def fetch_specific_version(self, name: str, version_tag: str) -> ExperimentVersion | None:
        return self.repository.fetch_specific_version(name, version_tag)

    def fetch_version_by_id(self, version_id: str) -> ExperimentVersion | None:
        return self.repository.fetch_version_by_id(version_id)

    def fetch_version_from_instance_id(self, instance_id: str) -> ExperimentVersion | None:
        return self.repository.fetch_version_from_instance_id(instance_id)

    def fetch_all_instances_of_version(self, version: ExperimentVersion) -> list[ExperimentInstance]:
        return self.repository.fetch_all_instances_of_version(version)

    def fetch_instance_by_id(self, instance_id: str) -> ExperimentInstance | None:
        return self.repository.fetch_instance_by_id(instance_id)

    def fetch_specific_instance(
        self, version: ExperimentVersion, input_values: Mapping[str, Any]
    ) -> ExperimentInstance | None:
        return self.repository.fetch_specific_instance(version, dict(input_values))

    def fetch_all_runs_of_instance(self, instance: ExperimentInstance) -> list[ExperimentRun]:
        return self.repository.fetch_all_runs_of_instance(instance)

    def fetch_runs_in_date_range(
        self, instance: ExperimentInstance, start: datetime, end: datetime
    ) -> list[ExperimentRun]:
        return self.repository.fetch_runs_in_date_range(instance, start, end)

    def run_statistics(self, instance: ExperimentInstance) -> RunStatistics:
        return aggregate_runs(self.fetch_all_runs_of_instance(instance))
