"""
Experiment archive.

Stores experiments as versioned schemas of input and output variables,
deduplicates instances by their input values and records runs of
measurements against them, in a DuckDB database.
"""

from .archive import ExperimentArchive, load_declaration
from .config import ArchiveSettings
from .deletion import CascadeDeleter, DeletionResult, parse_run_numbers
from .errors import (
    ArchiveError,
    ArchiveValidationError,
    ConfigurationError,
    ConsistencyError,
    DeclarationError,
    InputVariableMismatchError,
    MeasurementMismatchError,
    RunExecutionError,
    RunNumberError,
    StoreError,
    ValueTypeError,
    VariableRedefinitionError,
)
from .instances import InstanceResolver
from .models import ExperimentInstance, ExperimentRun, ExperimentVersion
from .persistence import DatabaseManager
from .repository import ArchiveRepository
from .runs import MeasurementAccumulator, RunRecorder
from .statistics import RunStatistics, aggregate_runs
from .variables import DataKind, DataType, Variable
from .versioning import VersionResolver

__version__ = "0.3.0"

__all__ = [
    "ArchiveError",
    "ArchiveRepository",
    "ArchiveSettings",
    "ArchiveValidationError",
    "CascadeDeleter",
    "ConfigurationError",
    "ConsistencyError",
    "DataKind",
    "DataType",
    "DatabaseManager",
    "DeclarationError",
    "DeletionResult",
    "ExperimentArchive",
    "ExperimentInstance",
    "ExperimentRun",
    "ExperimentVersion",
    "InputVariableMismatchError",
    "InstanceResolver",
    "MeasurementAccumulator",
    "MeasurementMismatchError",
    "RunExecutionError",
    "RunNumberError",
    "RunRecorder",
    "RunStatistics",
    "StoreError",
    "ValueTypeError",
    "Variable",
    "VariableRedefinitionError",
    "VersionResolver",
    "__version__",
    "aggregate_runs",
    "load_declaration",
    "parse_run_numbers",
]
