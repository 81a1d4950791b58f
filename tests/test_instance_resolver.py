"""
Instance resolution: deduplication by exact input assignment, input
validation and handling of concurrently created instances.
"""

import pytest

from experiment_archive.errors import ConsistencyError, InputVariableMismatchError, ValueTypeError
from experiment_archive.instances import InstanceResolver, build_assignment, input_key
from experiment_archive.variables import DataType, Variable


@pytest.fixture
def version(archive):
    return archive.declare(
        "E",
        "demo",
        ["ada"],
        [
            Variable("algorithm", "Algorithm", DataType.label()),
            Variable("size", "Input size", DataType.number()),
            Variable("warm", "Warm cache", DataType.boolean()),
        ],
        [Variable("time", "Runtime", DataType.with_unit("ms"))],
    )


VALUES = {"algorithm": "quicksort", "size": 1000, "warm": True}


class TestDeduplication:
    """Equal assignments under one version are the same instance."""

    def test_resolve_twice_returns_same_instance(self, db_manager, version, row_count):
        resolver = InstanceResolver(db_manager)

        first = resolver.resolve(version, VALUES)
        second = resolver.resolve(version, dict(reversed(list(VALUES.items()))))

        assert second == first
        assert row_count("experiment_instances") == 1
        assert row_count("in_values") == 3

    def test_int_and_float_inputs_are_equal(self, db_manager, version):
        resolver = InstanceResolver(db_manager)

        first = resolver.resolve(version, VALUES)
        second = resolver.resolve(version, {**VALUES, "size": 1000.0})

        assert second.id == first.id

    def test_different_value_creates_new_instance(self, db_manager, version, row_count):
        resolver = InstanceResolver(db_manager)

        first = resolver.resolve(version, VALUES)
        second = resolver.resolve(version, {**VALUES, "warm": False})

        assert second.id != first.id
        assert row_count("experiment_instances") == 2

    def test_same_values_under_other_version_are_distinct(self, archive, db_manager, version):
        other = archive.declare(
            "E",
            "changed",
            ["ada"],
            version.input_variables,
            version.output_variables,
        )
        resolver = InstanceResolver(db_manager)

        assert resolver.resolve(version, VALUES).id != resolver.resolve(other, VALUES).id

    def test_stored_instance_reads_back_equal(self, archive, version):
        instance = archive.instance(version, VALUES)

        assert archive.fetch_instance_by_id(instance.id) == instance
        assert archive.fetch_all_instances_of_version(version) == [instance]
        assert archive.fetch_specific_instance(version, VALUES) == instance
        assert archive.fetch_version_from_instance_id(instance.id) == version
        assert instance.values == {"algorithm": "quicksort", "size": 1000.0, "warm": True}

    def test_fetch_specific_instance_without_match(self, archive, version):
        archive.instance(version, VALUES)

        assert archive.fetch_specific_instance(version, {**VALUES, "size": 1}) is None
        assert archive.fetch_specific_instance(version, {"algorithm": "quicksort"}) is None
        assert archive.fetch_specific_instance(version, {**VALUES, "unknown": 1}) is None

    def test_version_without_inputs_has_single_instance(self, archive, row_count):
        version = archive.declare("N", "", [], [], [Variable("Y", "", DataType.number())])

        first = archive.instance(version, {})
        second = archive.instance(version, {})

        assert first.id == second.id
        assert first.input_values == ()
        assert row_count("in_values") == 0


class TestInputValidation:
    """Input values must match the version's input variables exactly."""

    def test_missing_input(self, db_manager, version, row_count):
        with pytest.raises(InputVariableMismatchError) as exc_info:
            InstanceResolver(db_manager).resolve(version, {"algorithm": "quicksort", "size": 1})

        assert exc_info.value.missing == frozenset({"warm"})
        assert exc_info.value.unexpected == frozenset()
        assert row_count("experiment_instances") == 0

    def test_unexpected_input(self, db_manager, version):
        with pytest.raises(InputVariableMismatchError) as exc_info:
            InstanceResolver(db_manager).resolve(version, {**VALUES, "seed": 3})

        assert exc_info.value.unexpected == frozenset({"seed"})
        assert "seed" in str(exc_info.value)

    def test_wrong_type(self, db_manager, version):
        with pytest.raises(ValueTypeError) as exc_info:
            InstanceResolver(db_manager).resolve(version, {**VALUES, "size": "large"})

        assert exc_info.value.variable_name == "size"

    @pytest.mark.parametrize("name,value", [("size", 10**400), ("algorithm", "quick\udcffsort")])
    def test_unstorable_value(self, db_manager, version, row_count, name, value):
        with pytest.raises(ValueTypeError) as exc_info:
            InstanceResolver(db_manager).resolve(version, {**VALUES, name: value})

        assert exc_info.value.variable_name == name
        assert row_count("experiment_instances") == 0

    def test_deleted_version(self, archive, db_manager, version):
        archive.delete_version(version)

        with pytest.raises(ConsistencyError):
            InstanceResolver(db_manager).resolve(version, VALUES)


class TestConcurrentCreation:
    """A unique input key guards against duplicate instances."""

    def test_input_key_is_canonical(self, version):
        a = build_assignment(version, VALUES)
        b = build_assignment(version, {"warm": True, "size": 1000.0, "algorithm": "quicksort"})

        assert input_key(a) == input_key(b)
        assert input_key(a) != input_key(build_assignment(version, {**VALUES, "warm": False}))

    def test_lost_race_returns_existing_instance(self, db_manager, version, row_count, monkeypatch):
        resolver = InstanceResolver(db_manager)
        winner = resolver.resolve(version, VALUES)

        # Simulate the race: the loser does not see the winner's row when searching
        monkeypatch.setattr(resolver, "_find", _blind_once(resolver._find))

        loser = resolver.resolve(version, VALUES)

        assert loser == winner
        assert row_count("experiment_instances") == 1

    def test_duplicate_instances_are_reported(self, db_manager, version):
        resolver = InstanceResolver(db_manager)
        instance = resolver.resolve(version, VALUES)
        db_manager.conn.execute(
            "INSERT INTO experiment_instances VALUES ('dupdupdupdupdup1', 'E', ?, 'other-key')",
            [version.id],
        )
        db_manager.conn.execute(
            "INSERT INTO in_values SELECT 'dupdupdupdupdup1', var_name, value FROM in_values WHERE ex_instance_id = ?",
            [instance.id],
        )

        with pytest.raises(ConsistencyError):
            resolver.resolve(version, VALUES)


def _blind_once(find):
    calls = []

    def wrapper(conn, version, assignment):
        calls.append(1)
        if len(calls) == 1:
            return None
        return find(conn, version, assignment)

    return wrapper


class TestLocalMode:
    """Without a store every resolution creates a fresh instance."""

    def test_local_mode_never_deduplicates(self, version):
        resolver = InstanceResolver(None)

        first = resolver.resolve(version, VALUES)
        second = resolver.resolve(version, VALUES)

        assert first.id != second.id
        assert first.has_assignment(second.input_values)

    def test_local_mode_still_validates(self, version):
        with pytest.raises(InputVariableMismatchError):
            InstanceResolver(None).resolve(version, {})
