"""
Run Recording

Executes a caller-supplied action against an instance, collects the
measurements it reports and persists them as one run.

The action receives a MeasurementAccumulator and may report from several
threads at once. A run is written only when every output variable of the
instance's version was reported exactly once.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from collections.abc import Callable
from typing import Any

from .errors import ArchiveError, ConsistencyError, MeasurementMismatchError, RunExecutionError
from .ids import gen_unique_id, utc_now
from .models import Assignment, ExperimentInstance, ExperimentRun, make_assignment
from .persistence import queries, writers
from .persistence.connection import DatabaseManager
from .variables import Value

logger = logging.getLogger(__name__)


class MeasurementAccumulator:
    """Collects the measurements of one run.

    Safe to share between threads; every report goes through one lock.

    Example:
        >>> def execute(context):
        ...     context.add_measurement("duration", 12.5)
        >>> recorder.record(instance, execute)
    """

    def __init__(self, instance: ExperimentInstance) -> None:
        self.instance = instance
        self._lock = threading.Lock()
        self._reports: list[tuple[str, Value]] = []

    def add_measurement(self, name: str, value: Any) -> None:
        """Report the value of an output variable.

        Raises:
            ValueTypeError: If ``name`` is an output variable and the value
                does not fit its type
        """
        variable = self.instance.version.output_variable(name)
        if variable is not None:
            value = variable.coerce(value)
        with self._lock:
            self._reports.append((name, value))

    def measurements(self) -> Assignment:
        """Validate the reports and pair them with their variables.

        Raises:
            MeasurementMismatchError: If an output variable is missing or
                reported twice, or an unknown name was reported
        """
        with self._lock:
            reports = list(self._reports)

        outputs = {variable.name: variable for variable in self.instance.version.output_variables}
        counts = Counter(name for name, _ in reports)
        missing = set(outputs) - set(counts)
        unexpected = set(counts) - set(outputs)
        duplicated = {name for name, count in counts.items() if count > 1 and name in outputs}
        if missing or unexpected or duplicated:
            raise MeasurementMismatchError(self.instance.id, missing, unexpected, duplicated)

        return make_assignment((outputs[name], value) for name, value in reports)


class RunRecorder:
    """Records runs of experiment instances.

    Args:
        db_manager: Store to persist runs to, or None for local mode
        log_runs: Emit a JSON log record per recorded run
    """

    def __init__(self, db_manager: DatabaseManager | None = None, log_runs: bool = True) -> None:
        self._db = db_manager
        self.log_runs = log_runs

    def record(
        self,
        instance: ExperimentInstance,
        execute: Callable[[MeasurementAccumulator], Any],
    ) -> ExperimentRun:
        """Execute an action and store its measurements as a new run.

        Args:
            instance: Instance the run belongs to
            execute: Action called with the accumulator; its return value is ignored

        Returns:
            The recorded run

        Raises:
            RunExecutionError: If the action raised; nothing is written
            MeasurementMismatchError: If the measurements are incomplete; nothing is written
            ValueTypeError: If a reported value does not fit its variable
            StoreError: If the store fails; nothing is written
        """
        context = MeasurementAccumulator(instance)
        try:
            execute(context)
        except ArchiveError:
            raise
        except Exception as e:
            raise RunExecutionError(instance.id) from e

        run = ExperimentRun(
            id=gen_unique_id(),
            instance=instance,
            recorded_at=utc_now(),
            measurements=context.measurements(),
        )

        if self._db is not None:
            with self._db.transaction("record run", instance.id) as conn:
                if not queries.select_instances_by_id(conn, instance.id):
                    raise ConsistencyError(f"Instance {instance.id} no longer exists, run not recorded")
                writers.insert_run(conn, run)
            logger.debug("Recorded run %s of instance %s", run.id, instance.id)

        if self.log_runs:
            self._log_run(run)
        return run

    def _log_run(self, run: ExperimentRun) -> None:
        try:
            logger.info(run_log_record(run))
        except Exception as e:
            logger.warning("Failed to log run %s: %s", run.id, e)


def _plain(pairs: Assignment) -> dict[str, Value]:
    return {variable.name: value for variable, value in pairs}


def run_log_record(run: ExperimentRun) -> str:
    """JSON summary of a run for the run log."""
    version = run.instance.version
    return json.dumps(
        {
            "name": version.name,
            "version": version.version_tag,
            "date": run.recorded_at.isoformat(),
            "input_variables": _plain(run.instance.input_values),
            "measurements": _plain(run.measurements),
        }
    )
