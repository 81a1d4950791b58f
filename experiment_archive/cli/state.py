"""Options shared by all CLI commands."""

from __future__ import annotations

from dataclasses import dataclass

import typer

from experiment_archive.archive import ExperimentArchive
from experiment_archive.config import ArchiveSettings, resolve_db_path


@dataclass
class CliState:
    """Global options of one CLI invocation."""

    db_path: str | None = None
    entry: str | None = None
    verbose: bool = False

    def resolved_db_path(self) -> str:
        return resolve_db_path(self.db_path, self.entry)

    def open_archive(self) -> ExperimentArchive:
        """Open the selected database, creating its schema if needed.

        The CLI always works on a store, so EXAR_LOCAL is ignored here.
        """
        settings = ArchiveSettings.from_env(db_path=self.resolved_db_path(), log_runs=False)
        return ExperimentArchive.open(settings.model_copy(update={"local": False}))


def get_state(ctx: typer.Context) -> CliState:
    """State stored by the main callback (defaults when invoked directly)."""
    state = ctx.find_object(CliState)
    return state if state is not None else CliState()
