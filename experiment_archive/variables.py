"""
Variable Catalog Types

Defines the data types a variable can have, the variables themselves and
the text encoding of values as they are stored in the database.

A value is a plain Python object:
- ``float`` for Number and Unit variables (ints are accepted and coerced)
- ``str`` for Label and Text variables
- ``bool`` for Bool variables

Stored text encoding:
- numbers use ``repr(float)`` (shortest round-tripping form)
- booleans are ``true`` / ``false``
- strings are stored verbatim
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .errors import ValueTypeError

Value = Union[float, str, bool]

# Matches what repr(float) produces for finite values plus "inf"/"-inf"
_NUMBER_PATTERN = re.compile(r"^-?(?:\d+\.\d*|\d+|\.\d+)(?:e[+-]?\d+)?$|^-?inf$")


# ============================================================================
# Data Types
# ============================================================================


class DataKind(str, Enum):
    """Kind of a variable's data type."""

    NUMBER = "Number"
    UNIT = "Unit"
    LABEL = "Label"
    TEXT = "Text"
    BOOL = "Bool"


@dataclass(frozen=True)
class DataType:
    """Declared type of a variable.

    Only ``Unit`` carries a payload, the unit name.

    Examples:
        >>> DataType.number()
        DataType(kind=<DataKind.NUMBER: 'Number'>, unit=None)
        >>> str(DataType.with_unit("ms"))
        'Unit(ms)'
        >>> DataType.from_json('{"Unit": "ms"}') == DataType.with_unit("ms")
        True
    """

    kind: DataKind
    unit: str | None = None

    def __post_init__(self) -> None:
        if (self.kind is DataKind.UNIT) != (self.unit is not None):
            raise ValueError(f"Only Unit data types carry a unit: {self.kind.value}, {self.unit!r}")

    @classmethod
    def number(cls) -> DataType:
        return cls(DataKind.NUMBER)

    @classmethod
    def with_unit(cls, unit: str) -> DataType:
        return cls(DataKind.UNIT, unit)

    @classmethod
    def label(cls) -> DataType:
        return cls(DataKind.LABEL)

    @classmethod
    def text(cls) -> DataType:
        return cls(DataKind.TEXT)

    @classmethod
    def boolean(cls) -> DataType:
        return cls(DataKind.BOOL)

    @property
    def is_numeric(self) -> bool:
        return self.kind in (DataKind.NUMBER, DataKind.UNIT)

    def __str__(self) -> str:
        if self.kind is DataKind.UNIT:
            return f"Unit({self.unit})"
        return self.kind.value

    # ------------------------------------------------------------------------
    # Stored representation
    # ------------------------------------------------------------------------

    def to_json(self) -> str:
        """Serialize to the JSON form stored in ``variables.type``."""
        if self.kind is DataKind.UNIT:
            return json.dumps({"Unit": self.unit})
        return json.dumps(self.kind.value)

    @classmethod
    def from_json(cls, text: str) -> DataType:
        """Parse the JSON form stored in ``variables.type``.

        Raises:
            ValueError: If the text is not a known data type
        """
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid data type JSON: {text!r}") from e
        return cls.from_raw(raw)

    @classmethod
    def from_raw(cls, raw: Any) -> DataType:
        """Build a data type from its decoded JSON or YAML form.

        Accepts ``"Number"``, ``"Label"``, ``"Text"``, ``"Bool"`` and
        ``{"Unit": "<unit>"}`` (the key is matched case-insensitively).

        Raises:
            ValueError: If the value is not a known data type
        """
        if isinstance(raw, str):
            for kind in DataKind:
                if kind is not DataKind.UNIT and kind.value.lower() == raw.lower():
                    return cls(kind)
        elif isinstance(raw, dict) and len(raw) == 1:
            ((key, unit),) = raw.items()
            if str(key).lower() == "unit" and isinstance(unit, str):
                return cls.with_unit(unit)
        raise ValueError(f"Unknown data type: {raw!r}")

    # ------------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------------

    def coerce(self, variable_name: str, value: Any) -> Value:
        """Check that ``value`` belongs to this type and normalize it.

        Args:
            variable_name: Variable name, for the error message
            value: Candidate value

        Returns:
            The value as ``float``, ``str`` or ``bool``

        Raises:
            ValueTypeError: If the value does not fit the type
        """
        if self.is_numeric:
            # bool is an int subclass but never a number here
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueTypeError(variable_name, str(self), value)
            try:
                number = float(value)
            except OverflowError as e:
                raise ValueTypeError(variable_name, str(self), value) from e
            if math.isnan(number):
                raise ValueTypeError(variable_name, str(self), value)
            return number
        if self.kind is DataKind.BOOL:
            if not isinstance(value, bool):
                raise ValueTypeError(variable_name, str(self), value)
            return value
        if not isinstance(value, str):
            raise ValueTypeError(variable_name, str(self), value)
        # Lone surrogates cannot be stored
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueTypeError(variable_name, str(self), value) from e
        return value

    def serialize(self, value: Value) -> str:
        """Encode a value that already passed :meth:`coerce`."""
        if self.is_numeric:
            return repr(float(value))
        if self.kind is DataKind.BOOL:
            return "true" if value else "false"
        return str(value)

    def parse(self, variable_name: str, text: str) -> Value:
        """Decode a stored value.

        Raises:
            ValueTypeError: If the text is not a valid encoding for this type
        """
        if self.is_numeric:
            if not _NUMBER_PATTERN.match(text):
                raise ValueTypeError(variable_name, str(self), text)
            return float(text)
        if self.kind is DataKind.BOOL:
            if text == "true":
                return True
            if text == "false":
                return False
            raise ValueTypeError(variable_name, str(self), text)
        return text


# ============================================================================
# Variables
# ============================================================================


@dataclass(frozen=True)
class Variable:
    """A named, typed measurable quantity.

    Identity is the full triple: two variables with the same name but a
    different description or type are different variables.
    """

    name: str
    description: str
    data_type: DataType

    def coerce(self, value: Any) -> Value:
        return self.data_type.coerce(self.name, value)

    def serialize(self, value: Value) -> str:
        return self.data_type.serialize(value)

    def parse(self, text: str) -> Value:
        return self.data_type.parse(self.name, text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "data_type": str(self.data_type),
        }


def sort_variables(variables: frozenset[Variable]) -> list[Variable]:
    """Return variables in name order."""
    return sorted(variables, key=lambda v: v.name)
