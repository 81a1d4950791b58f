"""
Version Resolution

Decides whether an experiment declaration is new, identical to the latest
stored version of that experiment, or a divergent declaration that becomes a
new version.

Algorithm (one store transaction):
1. Load the most recent version of the experiment name.
2. None stored: register the name, insert missing variables, insert a new
   version and link its variables.
3. Stored and build-equal (same version tag, description, researcher set,
   input variable set, output variable set): return it unchanged.
4. Stored but different: insert a new version; the old one stays.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .errors import DeclarationError, VariableRedefinitionError
from .ids import current_version_tag, gen_unique_id, utc_now
from .models import ExperimentVersion
from .persistence import writers
from .persistence.connection import DatabaseManager
from .repository import load_catalog_variables, load_latest_version
from .variables import Variable

logger = logging.getLogger(__name__)


def _check_declaration(
    name: str,
    input_variables: frozenset[Variable],
    output_variables: frozenset[Variable],
) -> None:
    if not name:
        raise DeclarationError("Experiment name must not be empty")

    seen: dict[str, Variable] = {}
    for variable in sorted(input_variables | output_variables, key=lambda v: v.name):
        if variable.name in seen:
            raise DeclarationError(
                f"Variable {variable.name} of experiment {name} is declared twice with different definitions"
            )
        seen[variable.name] = variable

    overlap = {v.name for v in input_variables} & {v.name for v in output_variables}
    if overlap:
        raise DeclarationError(
            f"Variables of experiment {name} cannot be both input and output: {', '.join(sorted(overlap))}"
        )


class VersionResolver:
    """Finds or creates the experiment version matching a declaration.

    Args:
        db_manager: Store to resolve against, or None for local mode
        version_tag: Build identity for new versions (derived when omitted)
        strict_variables: Reject variables whose name is already catalogued
            with a different description or type instead of warning

    Example:
        >>> resolver = VersionResolver(db_manager, version_tag="v1")
        >>> version = resolver.resolve(
        ...     "E", "demo", {"ada"},
        ...     {Variable("x", "input", DataType.label())},
        ...     {Variable("y", "output", DataType.number())},
        ... )
        >>> resolver.resolve(...) == version  # identical declaration
        True
    """

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        version_tag: str | None = None,
        strict_variables: bool = False,
    ) -> None:
        self._db = db_manager
        self.version_tag = current_version_tag(version_tag)
        self.strict_variables = strict_variables

    def resolve(
        self,
        name: str,
        description: str,
        researchers: Iterable[str],
        input_variables: Iterable[Variable],
        output_variables: Iterable[Variable],
    ) -> ExperimentVersion:
        """Return the version matching the declaration, creating one if needed.

        Raises:
            DeclarationError: If the declaration itself is malformed
            VariableRedefinitionError: In strict mode, on a conflicting variable
            StoreError: If the store fails; nothing is written in that case
        """
        researchers = frozenset(researchers)
        input_variables = frozenset(input_variables)
        output_variables = frozenset(output_variables)
        _check_declaration(name, input_variables, output_variables)

        if self._db is None:
            return self._new_version(name, description, researchers, input_variables, output_variables)

        with self._db.transaction("resolve experiment version", name) as conn:
            catalog = self._check_catalog(conn, input_variables | output_variables)
            input_variables = frozenset(catalog.get(v.name, v) for v in input_variables)
            output_variables = frozenset(catalog.get(v.name, v) for v in output_variables)

            latest = load_latest_version(conn, name)
            if latest is not None and latest.is_build_equal(
                self.version_tag, description, researchers, input_variables, output_variables
            ):
                logger.debug("Experiment %s unchanged, reusing version %s", name, latest.id)
                return latest

            version = self._new_version(name, description, researchers, input_variables, output_variables)
            writers.insert_experiment(conn, name)
            writers.insert_variables(conn, input_variables | output_variables)
            writers.insert_version(conn, version)

        if latest is None:
            logger.info("Registered experiment %s with version %s", name, version.id)
        else:
            logger.info("Experiment %s changed, created version %s (previous %s)", name, version.id, latest.id)
        return version

    def _new_version(
        self,
        name: str,
        description: str,
        researchers: frozenset[str],
        input_variables: frozenset[Variable],
        output_variables: frozenset[Variable],
    ) -> ExperimentVersion:
        return ExperimentVersion(
            id=gen_unique_id(),
            name=name,
            version_tag=self.version_tag,
            created_at=utc_now(),
            description=description,
            researchers=researchers,
            input_variables=input_variables,
            output_variables=output_variables,
        )

    def _check_catalog(self, conn, variables: frozenset[Variable]) -> dict[str, Variable]:
        """Compare declared variables with catalogued ones of the same name.

        Returns:
            Catalogued definitions by name. Versions always link the stored
            definition, so a redefinition resolves to the catalogued variable.
        """
        catalog = load_catalog_variables(conn, sorted(v.name for v in variables))
        for variable in sorted(variables, key=lambda v: v.name):
            stored = catalog.get(variable.name)
            if stored is None or stored == variable:
                continue
            if self.strict_variables:
                raise VariableRedefinitionError(
                    variable.name,
                    f"{stored.data_type}: {stored.description}",
                    f"{variable.data_type}: {variable.description}",
                )
            logger.warning(
                "Variable %s is already defined as %s (%r); the declared %s (%r) is replaced "
                "by the stored definition in the returned version",
                variable.name,
                stored.data_type,
                stored.description,
                variable.data_type,
                variable.description,
            )
        return catalog
