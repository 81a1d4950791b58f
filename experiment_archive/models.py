"""Archive entities.

Immutable records handed out by the resolvers, the run recorder and the
repository. Sets of variables are frozensets so that two versions compare
equal exactly when their variable definitions match.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .variables import Value, Variable, sort_variables

Assignment = tuple[tuple[Variable, Value], ...]


def make_assignment(pairs: Any) -> Assignment:
    """Normalize (variable, value) pairs into name order."""
    return tuple(sorted(pairs, key=lambda pair: pair[0].name))


def _assignment_dict(assignment: Assignment) -> dict[str, Value]:
    return {variable.name: value for variable, value in assignment}


# =============================================================================
# Entities
# =============================================================================


@dataclass(frozen=True)
class ExperimentVersion:
    """One version of an experiment declaration.

    Attributes:
        id: Unique 16 character identifier
        name: Experiment name shared by all versions
        version_tag: Build identity the version was created from
        created_at: UTC creation time
        description: Free-form description
        researchers: Names of the researchers
        input_variables: Variables fixed per instance
        output_variables: Variables measured per run
    """

    id: str
    name: str
    version_tag: str
    created_at: datetime
    description: str
    researchers: frozenset[str]
    input_variables: frozenset[Variable]
    output_variables: frozenset[Variable]

    def input_variable(self, name: str) -> Variable | None:
        return next((v for v in self.input_variables if v.name == name), None)

    def output_variable(self, name: str) -> Variable | None:
        return next((v for v in self.output_variables if v.name == name), None)

    def is_build_equal(
        self,
        version_tag: str,
        description: str,
        researchers: frozenset[str],
        input_variables: frozenset[Variable],
        output_variables: frozenset[Variable],
    ) -> bool:
        """Whether a declaration matches this version in everything but id and time."""
        return (
            self.version_tag == version_tag
            and self.description == description
            and self.researchers == researchers
            and self.input_variables == input_variables
            and self.output_variables == output_variables
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version_tag": self.version_tag,
            "created_at": self.created_at.isoformat(),
            "description": self.description,
            "researchers": sorted(self.researchers),
            "input_variables": [v.to_dict() for v in sort_variables(self.input_variables)],
            "output_variables": [v.to_dict() for v in sort_variables(self.output_variables)],
        }


@dataclass(frozen=True)
class ExperimentInstance:
    """A version with every input variable fixed to a value."""

    id: str
    version: ExperimentVersion
    input_values: Assignment

    @property
    def values(self) -> dict[str, Value]:
        return _assignment_dict(self.input_values)

    def has_assignment(self, assignment: Assignment) -> bool:
        """Set equality of (variable, value) pairs."""
        return len(assignment) == len(self.input_values) and frozenset(assignment) == frozenset(
            self.input_values
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "version_id": self.version.id,
            "name": self.version.name,
            "input_values": self.values,
        }


@dataclass(frozen=True)
class ExperimentRun:
    """A recorded set of measurements for an instance."""

    id: str
    instance: ExperimentInstance
    recorded_at: datetime
    measurements: Assignment

    @property
    def values(self) -> dict[str, Value]:
        return _assignment_dict(self.measurements)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instance_id": self.instance.id,
            "recorded_at": self.recorded_at.isoformat(),
            "measurements": self.values,
        }
