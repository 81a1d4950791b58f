"""
Pydantic Models for Persistence Layer

These models are the single source of truth for the database schema.
All DDL generation is derived from these models.

Referential integrity between the tables is maintained by the cascade
deleter; the DDL carries primary keys, unique constraints and indexes only.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# Enums
# ============================================================================


class VariableKind(str, Enum):
    """Role of a variable within an experiment version."""

    INPUT = "input"
    OUTPUT = "output"


# ============================================================================
# Experiment Records
# ============================================================================


class ExperimentRecord(BaseModel):
    """Registered experiment name. Versions reference it by name."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="experiments",
        primary_key=["name"],
    )

    name: str = Field(..., description="Experiment name")


class ExperimentVersionRecord(BaseModel):
    """One immutable version of an experiment declaration."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="experiment_versions",
        primary_key=["id"],
        indexes=[
            ("idx_versions_name_created", ["name", "created_at"]),
        ],
    )

    id: str = Field(..., description="Unique version identifier")
    name: str = Field(..., description="Experiment name")
    version_tag: str = Field(..., description="Build identity, e.g. git commit hash")
    created_at: datetime = Field(..., description="Creation time (UTC)")
    description: str = Field(..., description="Experiment description")
    researchers: str = Field(..., description="Researchers as sorted JSON array")


class VariableRecord(BaseModel):
    """Variable catalog entry. Append-only, keyed by name."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="variables",
        primary_key=["name"],
    )

    name: str = Field(..., description="Variable name")
    description: str = Field(..., description="Variable description")
    type: str = Field(..., description="Data type as JSON, e.g. \"Number\" or {\"Unit\": \"ms\"}")


class ExperimentVariableRecord(BaseModel):
    """Link between an experiment version and one of its variables."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="experiment_variables",
        unique=[["var_name", "ex_version_id"]],
        indexes=[
            ("idx_ex_vars_version", ["ex_version_id"]),
        ],
    )

    var_name: str = Field(..., description="Variable name")
    ex_name: str = Field(..., description="Experiment name")
    ex_version_id: str = Field(..., description="Experiment version identifier")
    kind: VariableKind = Field(..., description="input or output")


# ============================================================================
# Instance & Run Records
# ============================================================================


class ExperimentInstanceRecord(BaseModel):
    """An experiment version with fixed input values."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="experiment_instances",
        primary_key=["id"],
        unique=[["version_id", "input_key"]],
        indexes=[
            ("idx_instances_version", ["version_id"]),
        ],
    )

    id: str = Field(..., description="Unique instance identifier")
    name: str = Field(..., description="Experiment name")
    version_id: str = Field(..., description="Experiment version identifier")
    input_key: str = Field(..., description="SHA-256 of the sorted input assignment")


class InputValueRecord(BaseModel):
    """One fixed input value of an instance."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="in_values",
        primary_key=["ex_instance_id", "var_name"],
    )

    ex_instance_id: str = Field(..., description="Experiment instance identifier")
    var_name: str = Field(..., description="Input variable name")
    value: str = Field(..., description="Encoded value")


class RunRecord(BaseModel):
    """One recorded run of an instance."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="runs",
        primary_key=["id"],
        indexes=[
            ("idx_runs_instance_date", ["ex_instance_id", "date"]),
        ],
    )

    id: str = Field(..., description="Unique run identifier")
    ex_instance_id: str = Field(..., description="Experiment instance identifier")
    date: datetime = Field(..., description="Recording time (UTC)")


class MeasurementRecord(BaseModel):
    """One measured output value of a run."""

    model_config = ConfigDict(  # type: ignore[typeddict-unknown-key]
        table_name="measurements",
        primary_key=["run_id", "var_name"],
    )

    run_id: str = Field(..., description="Run identifier")
    var_name: str = Field(..., description="Output variable name")
    value: str = Field(..., description="Encoded value")


# Leaves last: the order tables are created in and the reverse of the
# order rows are deleted in.
ALL_RECORDS: list[type[BaseModel]] = [
    ExperimentRecord,
    ExperimentVersionRecord,
    VariableRecord,
    ExperimentVariableRecord,
    ExperimentInstanceRecord,
    InputValueRecord,
    RunRecord,
    MeasurementRecord,
]
