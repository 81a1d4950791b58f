"""
Persistence layer for the experiment archive.

Provides DuckDB-based storage for experiments, versions, variables,
instances, runs and measurements.
"""

from .connection import DatabaseManager, open_database
from .models import (
    ALL_RECORDS,
    ExperimentInstanceRecord,
    ExperimentRecord,
    ExperimentVariableRecord,
    ExperimentVersionRecord,
    InputValueRecord,
    MeasurementRecord,
    RunRecord,
    VariableKind,
    VariableRecord,
)

__all__ = [
    "ALL_RECORDS",
    "DatabaseManager",
    "ExperimentInstanceRecord",
    "ExperimentRecord",
    "ExperimentVariableRecord",
    "ExperimentVersionRecord",
    "InputValueRecord",
    "MeasurementRecord",
    "RunRecord",
    "VariableKind",
    "VariableRecord",
    "open_database",
]
