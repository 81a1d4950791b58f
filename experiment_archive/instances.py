"""
Instance Resolution

Finds or creates the unique instance of an experiment version for an exact
input-value assignment. Resolving twice with the same version and values
returns the same instance.

Each instance row carries an ``input_key`` (SHA-256 of the canonical input
assignment) under a UNIQUE(version_id, input_key) constraint. When two
writers race to create the same instance, the loser's insert fails on that
constraint and it returns the winner's instance instead.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any

import duckdb

from .errors import ConsistencyError, InputVariableMismatchError, StoreError
from .ids import gen_unique_id
from .models import Assignment, ExperimentInstance, ExperimentVersion, make_assignment
from .persistence import queries, writers
from .persistence.connection import DatabaseManager
from .repository import load_instances

logger = logging.getLogger(__name__)


def input_key(assignment: Assignment) -> str:
    """Canonical hash of an input assignment.

    Examples:
        >>> x = Variable("x", "", DataType.label())
        >>> input_key(((x, "a"),)) == input_key(((x, "a"),))
        True
    """
    canonical = json.dumps(
        [[variable.name, variable.serialize(value)] for variable, value in assignment],
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


def build_assignment(version: ExperimentVersion, input_values: Mapping[str, Any]) -> Assignment:
    """Validate input values against a version and pair them with their variables.

    Raises:
        InputVariableMismatchError: If the names differ from the version's input variables
        ValueTypeError: If a value does not fit its variable's type
    """
    expected = {variable.name for variable in version.input_variables}
    given = set(input_values)
    if given != expected:
        raise InputVariableMismatchError(version.name, expected - given, given - expected)

    return make_assignment(
        (variable, variable.coerce(input_values[variable.name])) for variable in version.input_variables
    )


class InstanceResolver:
    """Finds or creates the instance for a version and input values.

    Args:
        db_manager: Store to resolve against, or None for local mode
    """

    def __init__(self, db_manager: DatabaseManager | None = None) -> None:
        self._db = db_manager

    def resolve(self, version: ExperimentVersion, input_values: Mapping[str, Any]) -> ExperimentInstance:
        """Return the instance of ``version`` with exactly ``input_values``.

        Args:
            version: Experiment version the instance belongs to
            input_values: Value for every input variable, keyed by name

        Returns:
            The existing matching instance, or a newly created one

        Raises:
            InputVariableMismatchError: If the value names do not match the inputs
            ValueTypeError: If a value does not fit its variable's type
            StoreError: If the store fails
        """
        assignment = build_assignment(version, input_values)

        if self._db is None:
            return ExperimentInstance(id=gen_unique_id(), version=version, input_values=assignment)

        key = input_key(assignment)
        try:
            with self._db.transaction("resolve experiment instance", version.id) as conn:
                if not queries.select_versions_by_id(conn, version.id):
                    raise ConsistencyError(f"Version {version.id} of {version.name} no longer exists")
                existing = self._find(conn, version, assignment)
                if existing is not None:
                    return existing

                instance = ExperimentInstance(id=gen_unique_id(), version=version, input_values=assignment)
                writers.insert_instance(conn, instance, key)
        except StoreError as e:
            if not isinstance(e.__cause__, duckdb.ConstraintException):
                raise
            logger.info("Instance of version %s was created concurrently, re-reading it", version.id)
            return self._refetch(version, assignment, e)

        logger.info("Created instance %s of %s version %s", instance.id, version.name, version.id)
        return instance

    def _find(self, conn, version: ExperimentVersion, assignment: Assignment) -> ExperimentInstance | None:
        matches = [instance for instance in load_instances(conn, version) if instance.has_assignment(assignment)]
        if len(matches) > 1:
            raise ConsistencyError(
                f"Version {version.id} has {len(matches)} instances with identical input values"
            )
        return matches[0] if matches else None

    def _refetch(self, version: ExperimentVersion, assignment: Assignment, error: StoreError) -> ExperimentInstance:
        with self._db.session("resolve experiment instance", version.id) as conn:
            existing = self._find(conn, version, assignment)
        if existing is None:
            # The constraint fired for some other reason
            raise error
        return existing
