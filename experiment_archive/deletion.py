"""
Cascade Deletion

Removes experiments, versions, instances and runs together with every row
that references them, bottom-up inside one transaction:

    measurements -> runs -> input values -> instances
        -> variable links -> versions -> experiment

Variables are shared between experiments and are never deleted.

Runs are addressed by run number: the 1-based position of a run among its
instance's runs ordered by recording time.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from .errors import ArchiveValidationError, RunNumberError
from .models import ExperimentInstance, ExperimentVersion
from .persistence import queries, writers
from .persistence.connection import DatabaseManager

logger = logging.getLogger(__name__)

_RUN_RANGE = re.compile(r"^\s*(\d+)\s*(?:-\s*(\d+)\s*)?$")


@dataclass(frozen=True)
class DeletionResult:
    """Counts of what a cascade deleted."""

    versions: int = 0
    instances: int = 0
    runs: int = 0


def parse_run_numbers(text: str) -> list[int]:
    """Parse a run number selection.

    Accepts single numbers, comma separated lists and inclusive ranges, in
    any combination.

    Args:
        text: Selection such as ``"4"``, ``"1,2,4"``, ``"1-6"`` or ``"1-3,7"``

    Returns:
        Sorted, de-duplicated run numbers

    Raises:
        RunNumberError: If the selection is malformed or contains 0

    Examples:
        >>> parse_run_numbers("1-3,7")
        [1, 2, 3, 7]
    """
    numbers: set[int] = set()
    for part in text.split(","):
        match = _RUN_RANGE.match(part)
        if match is None:
            raise RunNumberError(f"Invalid run number selection: {text!r}")
        first = int(match.group(1))
        last = int(match.group(2)) if match.group(2) is not None else first
        if first < 1 or last < first:
            raise RunNumberError(f"Invalid run number range in {text!r}: {part.strip()}")
        numbers.update(range(first, last + 1))
    return sorted(numbers)


class CascadeDeleter:
    """Deletes archive entities and everything that depends on them.

    Each operation runs in one transaction; on failure nothing is deleted.

    Args:
        db_manager: Store to delete from (local mode has nothing to delete)
    """

    def __init__(self, db_manager: DatabaseManager | None) -> None:
        self._db = db_manager

    def _store(self) -> DatabaseManager:
        if self._db is None:
            raise ArchiveValidationError("Nothing to delete: the archive runs in local mode")
        return self._db

    def delete_experiment(self, name: str) -> DeletionResult:
        """Delete every version of an experiment, then the experiment itself.

        Deleting an unknown experiment is a no-op.
        """
        instances = runs = 0
        with self._store().transaction("delete experiment", name) as conn:
            version_ids = queries.select_version_ids_by_name(conn, name)
            for version_id in version_ids:
                num_instances, num_runs = writers.delete_version_rows(conn, version_id)
                instances += num_instances
                runs += num_runs
            writers.delete_experiment_row(conn, name)

        result = DeletionResult(versions=len(version_ids), instances=instances, runs=runs)
        logger.info("Deleted experiment %s: %s", name, result)
        return result

    def delete_version(self, version: ExperimentVersion) -> DeletionResult:
        """Delete one version with its instances and runs.

        Sibling versions and the experiment row are left alone.
        """
        with self._store().transaction("delete experiment version", version.id) as conn:
            existed = bool(queries.select_versions_by_id(conn, version.id))
            instances, runs = writers.delete_version_rows(conn, version.id)

        result = DeletionResult(versions=int(existed), instances=instances, runs=runs)
        logger.info("Deleted version %s of %s: %s", version.id, version.name, result)
        return result

    def delete_instance(self, instance: ExperimentInstance) -> DeletionResult:
        """Delete an instance with its runs and input values."""
        with self._store().transaction("delete experiment instance", instance.id) as conn:
            existed = bool(queries.select_instances_by_id(conn, instance.id))
            runs = writers.delete_instance_rows(conn, instance.id)

        result = DeletionResult(instances=int(existed), runs=runs)
        logger.info("Deleted instance %s: %s", instance.id, result)
        return result

    def delete_runs(self, instance: ExperimentInstance, run_numbers: Iterable[int]) -> DeletionResult:
        """Delete selected runs of an instance by run number.

        Args:
            instance: Instance owning the runs
            run_numbers: 1-based run numbers, e.g. ``[1, 4]`` or ``range(2, 5)``

        Raises:
            RunNumberError: If a run number does not exist; nothing is deleted
        """
        numbers = sorted(set(run_numbers))
        if not numbers:
            return DeletionResult()

        with self._store().transaction("delete runs", instance.id) as conn:
            run_ids = [row[0] for row in queries.select_runs_of_instance(conn, instance.id)]
            invalid = [n for n in numbers if not 1 <= n <= len(run_ids)]
            if invalid:
                raise RunNumberError(
                    f"Instance {instance.id} has {len(run_ids)} runs, "
                    f"no run numbered {', '.join(str(n) for n in invalid)}"
                )

            selected = [run_ids[n - 1] for n in numbers]
            writers.delete_measurements_of_runs(conn, selected)
            writers.delete_runs_by_id(conn, selected)

        logger.info("Deleted runs %s of instance %s", numbers, instance.id)
        return DeletionResult(runs=len(selected))
