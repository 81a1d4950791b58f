"""
Run recording: measurement completeness, failing actions, concurrent
reporting and the JSON run log.
"""

import json
import logging
import threading
from datetime import timedelta

import pytest

from experiment_archive.errors import (
    ConsistencyError,
    MeasurementMismatchError,
    RunExecutionError,
    ValueTypeError,
)
from experiment_archive.runs import RunRecorder, run_log_record
from experiment_archive.variables import DataType, Variable


@pytest.fixture
def version(archive):
    return archive.declare(
        "E",
        "demo",
        ["ada"],
        [Variable("algorithm", "Algorithm", DataType.label())],
        [
            Variable("time", "Runtime", DataType.with_unit("ms")),
            Variable("sorted", "Output is sorted", DataType.boolean()),
            Variable("note", "Free text", DataType.text()),
        ],
    )


@pytest.fixture
def instance(archive, version):
    return archive.instance(version, {"algorithm": "quicksort"})


def complete(context):
    context.add_measurement("time", 12)
    context.add_measurement("sorted", True)
    context.add_measurement("note", "ok")


class TestRecording:
    """Complete measurements are stored as one run."""

    def test_record_run(self, db_manager, instance, row_count):
        run = RunRecorder(db_manager).record(instance, complete)

        assert len(run.id) == 16
        assert run.instance == instance
        assert run.values == {"time": 12.0, "sorted": True, "note": "ok"}
        assert run.recorded_at.tzinfo is not None
        assert row_count("runs") == 1
        assert row_count("measurements") == 3

    def test_recorded_run_reads_back_equal(self, archive, instance):
        run = archive.run(instance, complete)

        assert archive.fetch_all_runs_of_instance(instance) == [run]

    def test_runs_are_ordered_by_recording_time(self, archive, instance):
        runs = [archive.run(instance, complete) for _ in range(3)]

        assert [run.id for run in archive.fetch_all_runs_of_instance(instance)] == [run.id for run in runs]

    def test_return_value_of_action_is_ignored(self, archive, instance):
        def execute(context):
            complete(context)
            return "ignored"

        assert archive.run(instance, execute).values["note"] == "ok"

    def test_fetch_runs_in_date_range(self, archive, instance):
        first = archive.run(instance, complete)
        second = archive.run(instance, complete)

        start = first.recorded_at
        assert archive.fetch_runs_in_date_range(instance, start, second.recorded_at) == [first]
        assert archive.fetch_runs_in_date_range(instance, start, second.recorded_at + timedelta(seconds=1)) == [
            first,
            second,
        ]
        assert archive.fetch_runs_in_date_range(instance, start - timedelta(days=2), start - timedelta(days=1)) == []


class TestIncompleteMeasurements:
    """A run is only written when every output was reported exactly once."""

    def test_missing_measurement(self, db_manager, instance, row_count):
        def execute(context):
            context.add_measurement("time", 1.0)

        with pytest.raises(MeasurementMismatchError) as exc_info:
            RunRecorder(db_manager).record(instance, execute)

        assert exc_info.value.missing == frozenset({"sorted", "note"})
        assert row_count("runs") == 0
        assert row_count("measurements") == 0

    def test_duplicate_measurement(self, db_manager, instance, row_count):
        def execute(context):
            complete(context)
            context.add_measurement("time", 2.0)

        with pytest.raises(MeasurementMismatchError) as exc_info:
            RunRecorder(db_manager).record(instance, execute)

        assert exc_info.value.duplicated == frozenset({"time"})
        assert row_count("runs") == 0

    def test_unexpected_measurement(self, db_manager, instance, row_count):
        def execute(context):
            complete(context)
            context.add_measurement("memory", 3.0)

        with pytest.raises(MeasurementMismatchError) as exc_info:
            RunRecorder(db_manager).record(instance, execute)

        assert exc_info.value.unexpected == frozenset({"memory"})
        assert row_count("runs") == 0

    def test_mistyped_measurement(self, db_manager, instance, row_count):
        def execute(context):
            context.add_measurement("time", "fast")

        with pytest.raises(ValueTypeError):
            RunRecorder(db_manager).record(instance, execute)
        assert row_count("runs") == 0


class TestFailingAction:
    """Errors from the action abort the run."""

    def test_action_error_is_wrapped(self, db_manager, instance, row_count):
        def execute(context):
            context.add_measurement("time", 1.0)
            raise RuntimeError("benchmark crashed")

        with pytest.raises(RunExecutionError) as exc_info:
            RunRecorder(db_manager).record(instance, execute)

        assert exc_info.value.instance_id == instance.id
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert row_count("runs") == 0

    def test_deleted_instance(self, archive, db_manager, instance, row_count):
        archive.delete_instance(instance)

        with pytest.raises(ConsistencyError):
            RunRecorder(db_manager).record(instance, complete)
        assert row_count("runs") == 0


class TestConcurrentReporting:
    """Measurements may be reported from several threads."""

    def test_threads_report_into_one_run(self, archive, instance):
        def execute(context):
            reporters = [
                threading.Thread(target=context.add_measurement, args=("time", 5.5)),
                threading.Thread(target=context.add_measurement, args=("sorted", False)),
                threading.Thread(target=context.add_measurement, args=("note", "threaded")),
            ]
            for thread in reporters:
                thread.start()
            for thread in reporters:
                thread.join()

        run = archive.run(instance, execute)

        assert run.values == {"time": 5.5, "sorted": False, "note": "threaded"}

    def test_concurrent_runs_of_one_instance(self, archive, instance):
        errors = []

        def record():
            try:
                archive.run(instance, complete)
            except Exception as e:
                errors.append(e)

        workers = [threading.Thread(target=record) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert errors == []
        assert len(archive.fetch_all_runs_of_instance(instance)) == 4


class TestRunLog:
    """Every recorded run emits one JSON log record."""

    def test_log_record(self, db_manager, instance, caplog):
        with caplog.at_level(logging.INFO, logger="experiment_archive.runs"):
            run = RunRecorder(db_manager).record(instance, complete)

        records = [r for r in caplog.records if r.name == "experiment_archive.runs" and r.levelno == logging.INFO]
        assert len(records) == 1
        payload = json.loads(records[0].getMessage())
        assert payload == {
            "name": "E",
            "version": "build test",
            "date": run.recorded_at.isoformat(),
            "input_variables": {"algorithm": "quicksort"},
            "measurements": {"time": 12.0, "sorted": True, "note": "ok"},
        }

    def test_log_disabled(self, db_manager, instance, caplog):
        with caplog.at_level(logging.INFO, logger="experiment_archive.runs"):
            RunRecorder(db_manager, log_runs=False).record(instance, complete)

        assert not [r for r in caplog.records if r.levelno == logging.INFO and r.name == "experiment_archive.runs"]

    def test_log_failure_does_not_lose_run(self, db_manager, instance, row_count, monkeypatch, caplog):
        from experiment_archive import runs

        def broken(run):
            raise TypeError("not serializable")

        monkeypatch.setattr(runs, "run_log_record", broken)

        with caplog.at_level(logging.WARNING, logger="experiment_archive.runs"):
            RunRecorder(db_manager).record(instance, complete)

        assert row_count("runs") == 1
        assert "Failed to log run" in caplog.text

    def test_run_log_record_in_local_mode(self, instance):
        run = RunRecorder(None, log_runs=False).record(instance, complete)

        assert json.loads(run_log_record(run))["measurements"]["note"] == "ok"
