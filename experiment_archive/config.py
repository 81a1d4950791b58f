"""
Archive Configuration

Two layers:

- ArchiveSettings: how an archive is opened (database path, local mode,
  version tag, strictness). Read from ``EXAR_*`` environment variables.
- Configuration: the CLI's named database entries, stored as YAML in the
  user's application directory. Exactly one entry is the default.

Example config.yaml:

    entries:
      - name: lab
        db_path: /data/lab.db
        is_default: true
      - name: scratch
        db_path: /tmp/scratch.db
        is_default: false
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import typer
import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigurationError

APP_NAME = "exar"
DEFAULT_DB_PATH = "experiments.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


# ============================================================================
# Archive Settings
# ============================================================================


class ArchiveSettings(BaseModel):
    """Settings for opening an ExperimentArchive."""

    db_path: str = Field(DEFAULT_DB_PATH, description="DuckDB database file or :memory:")
    local: bool = Field(False, description="Run without a store; nothing is persisted")
    version_tag: str | None = Field(None, description="Explicit build identity for new versions")
    strict_variables: bool = Field(False, description="Reject redefinition of catalogued variables")
    log_runs: bool = Field(True, description="Log a JSON record for every recorded run")

    @classmethod
    def from_env(cls, **overrides: Any) -> ArchiveSettings:
        """Build settings from ``EXAR_*`` environment variables.

        Recognized variables: EXAR_DB_PATH, EXAR_LOCAL, EXAR_VERSION_TAG,
        EXAR_STRICT_VARIABLES. Keyword overrides win over the environment.
        """
        values: dict[str, Any] = {
            "local": _env_flag("EXAR_LOCAL"),
            "strict_variables": _env_flag("EXAR_STRICT_VARIABLES"),
        }
        if os.environ.get("EXAR_DB_PATH"):
            values["db_path"] = os.environ["EXAR_DB_PATH"]
        if os.environ.get("EXAR_VERSION_TAG"):
            values["version_tag"] = os.environ["EXAR_VERSION_TAG"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# ============================================================================
# CLI Configuration
# ============================================================================


class ConfigEntry(BaseModel):
    """A named database the CLI can work on."""

    name: str = Field(..., min_length=1, description="Entry name")
    db_path: str = Field(..., min_length=1, description="DuckDB database file")
    is_default: bool = Field(False, description="Used when no entry is selected")


class Configuration(BaseModel):
    """Named database entries with exactly one default."""

    entries: list[ConfigEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_entries(self) -> Configuration:
        """Validate unique names and a single default."""
        names = [entry.name for entry in self.entries]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate configuration entries: {', '.join(duplicates)}")

        defaults = [entry.name for entry in self.entries if entry.is_default]
        if self.entries and len(defaults) != 1:
            raise ValueError(f"Exactly one entry must be the default, found {len(defaults)}")
        return self

    # ------------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------------

    def get(self, name: str) -> ConfigEntry:
        for entry in self.entries:
            if entry.name == name:
                return entry
        raise ConfigurationError(f"No configuration entry named {name}")

    def default_entry(self) -> ConfigEntry | None:
        return next((entry for entry in self.entries if entry.is_default), None)

    # ------------------------------------------------------------------------
    # Changes (each returns a new, validated configuration)
    # ------------------------------------------------------------------------

    def add_entry(self, name: str, db_path: str, make_default: bool = False) -> Configuration:
        """Add an entry. The first entry always becomes the default."""
        if any(entry.name == name for entry in self.entries):
            raise ConfigurationError(f"Configuration entry {name} already exists")
        make_default = make_default or not self.entries
        entries = [
            entry.model_copy(update={"is_default": entry.is_default and not make_default})
            for entry in self.entries
        ]
        entries.append(ConfigEntry(name=name, db_path=db_path, is_default=make_default))
        return _build(entries)

    def set_default(self, name: str) -> Configuration:
        self.get(name)
        return _build(
            [entry.model_copy(update={"is_default": entry.name == name}) for entry in self.entries]
        )

    def remove_entry(self, name: str) -> Configuration:
        """Remove an entry. Removing the default promotes the first remaining entry."""
        removed = self.get(name)
        entries = [entry for entry in self.entries if entry.name != name]
        if removed.is_default and entries:
            entries[0] = entries[0].model_copy(update={"is_default": True})
        return _build(entries)


def _build(entries: list[ConfigEntry]) -> Configuration:
    try:
        return Configuration(entries=entries)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


# ============================================================================
# Loading & Saving
# ============================================================================


def config_path() -> Path:
    """Location of the CLI configuration file.

    ``EXAR_CONFIG_PATH`` overrides the default
    ``<app dir>/config.yaml`` (see ``typer.get_app_dir``).
    """
    override = os.environ.get("EXAR_CONFIG_PATH")
    if override:
        return Path(override)
    return Path(typer.get_app_dir(APP_NAME)) / "config.yaml"


def load_configuration(path: str | Path | None = None) -> Configuration:
    """Load the CLI configuration.

    Args:
        path: Configuration file (defaults to ``config_path()``)

    Returns:
        Validated Configuration; empty if the file does not exist

    Raises:
        ConfigurationError: If the file is not valid YAML or fails validation
    """
    path = Path(path) if path is not None else config_path()
    if not path.exists():
        return Configuration()

    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file {path}: {e}") from e

    if raw is None:
        return Configuration()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    try:
        return Configuration.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e


def save_configuration(configuration: Configuration, path: str | Path | None = None) -> Path:
    """Write the CLI configuration as YAML, creating parent directories.

    Returns:
        Path the configuration was written to
    """
    path = Path(path) if path is not None else config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(configuration.model_dump(), f, sort_keys=False)
    return path


def resolve_db_path(db_path: str | None = None, entry: str | None = None) -> str:
    """Pick the database for a CLI invocation.

    Order: explicit path, named entry, EXAR_DB_PATH, default entry,
    ``experiments.db``.
    """
    if db_path:
        return db_path
    configuration = load_configuration()
    if entry:
        return configuration.get(entry).db_path
    if os.environ.get("EXAR_DB_PATH"):
        return os.environ["EXAR_DB_PATH"]
    default = configuration.default_entry()
    return default.db_path if default is not None else DEFAULT_DB_PATH
