"""
Per-variable aggregation of run measurements.
"""

import pytest

from experiment_archive.ids import utc_now
from experiment_archive.models import ExperimentInstance, ExperimentRun, ExperimentVersion, make_assignment
from experiment_archive.statistics import aggregate_runs
from experiment_archive.variables import DataType, Variable

TIME = Variable("time", "Runtime", DataType.with_unit("ms"))
SCORE = Variable("score", "Score", DataType.number())
OK = Variable("ok", "Success", DataType.boolean())
LABEL = Variable("winner", "Winner", DataType.label())


def make_runs(rows):
    version = ExperimentVersion(
        id="v" * 16,
        name="E",
        version_tag="build test",
        created_at=utc_now(),
        description="",
        researchers=frozenset(),
        input_variables=frozenset(),
        output_variables=frozenset({TIME, SCORE, OK, LABEL}),
    )
    instance = ExperimentInstance(id="i" * 16, version=version, input_values=())
    outputs = {variable.name: variable for variable in version.output_variables}
    return [
        ExperimentRun(
            id=f"run{n:013d}",
            instance=instance,
            recorded_at=utc_now(),
            measurements=make_assignment((outputs[name], value) for name, value in row.items()),
        )
        for n, row in enumerate(rows)
    ]


ROWS = [
    {"time": 10.0, "score": 1.0, "ok": True, "winner": "a"},
    {"time": 20.0, "score": 2.0, "ok": False, "winner": "b"},
    {"time": 60.0, "score": 3.0, "ok": True, "winner": "a"},
    {"time": 30.0, "score": 4.0, "ok": True, "winner": "c"},
]


class TestAggregation:
    def test_numeric(self):
        stats = aggregate_runs(make_runs(ROWS))

        time = stats.get("time")
        assert time.count == 4
        assert time.mean == pytest.approx(30.0)
        assert time.median == pytest.approx(25.0)
        assert time.std == pytest.approx(21.602468994692867)
        assert stats.get("score").mean == pytest.approx(2.5)

    def test_bool_probability(self):
        assert aggregate_runs(make_runs(ROWS)).get("ok").probability == pytest.approx(0.75)

    def test_label_histogram_sorted_by_count(self):
        histogram = aggregate_runs(make_runs(ROWS)).get("winner").histogram

        assert list(histogram.items()) == [("a", 2), ("b", 1), ("c", 1)]

    def test_variables_in_name_order(self):
        stats = aggregate_runs(make_runs(ROWS))

        assert stats.num_runs == 4
        assert [s.variable.name for s in stats.variables] == ["ok", "score", "time", "winner"]

    def test_single_run_has_no_std(self):
        stats = aggregate_runs(make_runs(ROWS[:1]))

        assert stats.get("time").std is None
        assert stats.get("time").mean == 10.0

    def test_no_runs(self):
        stats = aggregate_runs([])

        assert stats.num_runs == 0
        assert stats.variables == []
        assert stats.get("time") is None


class TestRendering:
    def test_summary(self):
        stats = aggregate_runs(make_runs(ROWS))

        assert stats.get("time").summary() == "mean 30 ms, median 25 ms, std 21.6 ms"
        assert stats.get("ok").summary() == "P(true) = 0.75"
        assert stats.get("winner").summary() == "a: 2, b: 1, c: 1"

    def test_to_dict(self):
        data = aggregate_runs(make_runs(ROWS)).to_dict()

        assert data["num_runs"] == 4
        by_name = {entry["variable"]: entry for entry in data["variables"]}
        assert set(by_name["time"]) == {"variable", "count", "mean", "median", "std"}
        assert by_name["ok"]["probability"] == pytest.approx(0.75)
        assert by_name["winner"]["histogram"] == {"a": 2, "b": 1, "c": 1}
