"""Logical column types and the conversion rules used by table rebuilds.

Columns are described by a closed set of logical types rather than the
engine's loose storage classes. When a rebuild changes a column's type the
row copy needs a rule for every (source, target) pair, so the conversion
table below is total over the 6x6 matrix.

Conversion matrix (rows = source, columns = target):

              | INT   | REAL  | TEXT  | BLOB  | BOOL  | TS    |
        ------|-------|-------|-------|-------|-------|-------|
        INT   | =     | cast  | cast  | cast  | bool  | e->ts |
        REAL  | cast  | =     | cast  | cast  | bool  | e->ts |
        TEXT  | cast  | cast  | =     | cast  | tbool | cast  |
        BLOB  | cast  | cast  | cast  | =     | tbool | cast  |
        BOOL  | cast  | cast  | cast  | cast  | =     | e->ts |
        TS    | ts->e | ts->e | cast  | cast  | bool  | =     |

NULL always converts to NULL.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, auto
from typing import Any


class LogicalType(Enum):
    """Logical type of a column."""

    INTEGER = "integer"
    REAL = "real"
    TEXT = "text"
    BLOB = "blob"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    """ISO-8601 text in UTC."""

    def accepts(self, value: Any) -> bool:
        """Check whether a Python value is a valid literal of this type.

        Args:
            value: Candidate default value.

        Returns:
            True if the value can be stored as this type without conversion.
        """
        if value is None:
            return True
        if self is LogicalType.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        if self is LogicalType.REAL:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self is LogicalType.TEXT:
            return isinstance(value, str)
        if self is LogicalType.BLOB:
            return isinstance(value, (bytes, bytearray))
        if self is LogicalType.BOOLEAN:
            return isinstance(value, bool)
        if self is LogicalType.TIMESTAMP:
            if not isinstance(value, str):
                return False
            try:
                datetime.fromisoformat(value)
            except ValueError:
                return False
            return True
        return False


class ConversionRule(Enum):
    """How a value moves from a source column type to a target column type."""

    IDENTITY = auto()
    """Same type; copy the value as-is."""

    CAST = auto()
    """Engine cast to the target storage class."""

    TO_BOOLEAN = auto()
    """Numeric truthiness: zero is false, anything else true."""

    TEXT_TO_BOOLEAN = auto()
    """Text truthiness: '1', 'true', 't', 'yes', 'y' (any case) are true."""

    EPOCH_TO_TIMESTAMP = auto()
    """Seconds since the Unix epoch to ISO-8601 text."""

    TIMESTAMP_TO_EPOCH = auto()
    """ISO-8601 text to seconds since the Unix epoch."""


_NUMERIC = frozenset({LogicalType.INTEGER, LogicalType.REAL, LogicalType.BOOLEAN})
_TEXTUAL = frozenset({LogicalType.TEXT, LogicalType.BLOB})


def conversion_rule(source: LogicalType, target: LogicalType) -> ConversionRule:
    """Return the rule for copying a ``source`` value into a ``target`` column.

    Total over every pair of logical types.
    """
    if source is target:
        return ConversionRule.IDENTITY
    if target is LogicalType.BOOLEAN:
        if source in _TEXTUAL:
            return ConversionRule.TEXT_TO_BOOLEAN
        return ConversionRule.TO_BOOLEAN
    if target is LogicalType.TIMESTAMP and source in _NUMERIC:
        return ConversionRule.EPOCH_TO_TIMESTAMP
    if source is LogicalType.TIMESTAMP and target in (LogicalType.INTEGER, LogicalType.REAL):
        return ConversionRule.TIMESTAMP_TO_EPOCH
    return ConversionRule.CAST
