"""Exception hierarchy for the experiment archive.

Three families, all rooted at ArchiveError:

- ArchiveValidationError: the caller misused the API (wrong input variables,
  incomplete measurements, a value of the wrong type). Never retried.
- StoreError: the store failed (connection, constraint, transaction abort).
- ConsistencyError: the store holds data in a shape that should be impossible.
"""

from __future__ import annotations

from collections.abc import Iterable


class ArchiveError(Exception):
    """Base class for all errors raised by the archive."""


# ============================================================================
# Validation Errors
# ============================================================================


class ArchiveValidationError(ArchiveError):
    """Raised when the caller passes data that violates an archive precondition."""


class ValueTypeError(ArchiveValidationError):
    """Raised when a value does not match the declared type of its variable."""

    def __init__(self, variable_name: str, expected: str, value: object) -> None:
        self.variable_name = variable_name
        self.expected = expected
        self.value = value
        super().__init__(
            f"Wrong value for variable {variable_name}. "
            f"Expected type {expected} but got {value!r}"
        )


def _joined(names: Iterable[str]) -> str:
    return ", ".join(sorted(names)) or "-"


class InputVariableMismatchError(ArchiveValidationError):
    """Raised when fixed input values do not cover exactly the input variables."""

    def __init__(
        self,
        experiment_name: str,
        missing: Iterable[str],
        unexpected: Iterable[str],
    ) -> None:
        self.experiment_name = experiment_name
        self.missing = frozenset(missing)
        self.unexpected = frozenset(unexpected)
        super().__init__(
            f"Input variable values do not match the input variables of experiment "
            f"{experiment_name}. Missing: {_joined(self.missing)}. "
            f"Unexpected: {_joined(self.unexpected)}"
        )


class MeasurementMismatchError(ArchiveValidationError):
    """Raised when a run did not measure every output variable exactly once."""

    def __init__(
        self,
        instance_id: str,
        missing: Iterable[str],
        unexpected: Iterable[str],
        duplicated: Iterable[str] = (),
    ) -> None:
        self.instance_id = instance_id
        self.missing = frozenset(missing)
        self.unexpected = frozenset(unexpected)
        self.duplicated = frozenset(duplicated)
        super().__init__(
            f"Measurements of run for instance {instance_id} do not match the output "
            f"variables. Missing: {_joined(self.missing)}. "
            f"Unexpected: {_joined(self.unexpected)}. "
            f"Duplicated: {_joined(self.duplicated)}"
        )


class RunNumberError(ArchiveValidationError):
    """Raised for malformed or unknown run numbers."""


class VariableRedefinitionError(ArchiveValidationError):
    """Raised in strict mode when a known variable name is declared differently."""

    def __init__(self, variable_name: str, stored: str, declared: str) -> None:
        self.variable_name = variable_name
        super().__init__(
            f"Variable {variable_name} is already defined as '{stored}', "
            f"refusing redefinition as '{declared}'"
        )


class DeclarationError(ArchiveValidationError):
    """Raised when an experiment declaration (e.g. YAML) is malformed."""


# ============================================================================
# Store & Consistency Errors
# ============================================================================


class StoreError(ArchiveError):
    """Raised when a store operation fails.

    The message names the failed operation and the entity involved; the
    underlying driver error is chained as ``__cause__``.
    """


class ConsistencyError(ArchiveError):
    """Raised when the store contains data that violates an archive invariant."""


# ============================================================================
# Run & Configuration Errors
# ============================================================================


class RunExecutionError(ArchiveError):
    """Raised when the caller-supplied run function fails."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Failed to execute run function for experiment instance {instance_id}")


class ConfigurationError(ArchiveError):
    """Raised for an invalid CLI configuration."""
