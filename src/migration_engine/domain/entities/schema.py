"""Schema description: versions, tables, columns, indices and constraints.

A SchemaVersion is an immutable snapshot of the store's logical shape. It is
produced by an external schema-description collaborator and handed to the
planner as ordinary data; nothing in the engine keeps a global "current
schema".
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from migration_engine.domain.exceptions import ValidationError
from migration_engine.domain.value_objects import (
    LEDGER_AUDIT_TABLE,
    LEDGER_TABLE,
    SHADOW_PREFIX,
    ConstraintKind,
    LogicalType,
    VersionId,
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_PREFIXES = ("sqlite_", SHADOW_PREFIX, "_migration_")


def _check_identifier(name: str, what: str) -> None:
    if not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid {what} name: {name!r}")


def encode_value(value: Any) -> Any:
    """Encode a literal so it can be embedded in canonical JSON."""
    if isinstance(value, (bytes, bytearray)):
        return {"$bytes": bytes(value).hex()}
    return value


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    """A column of a table.

    Attributes:
        name: Column name.
        logical_type: Closed logical type of the column.
        nullable: Whether NULL is allowed.
        default: Default value for new rows and for rows copied into a
            rebuilt table when the column is introduced.
        renamed_from: Previous name of the column, when the column is a
            rename of an existing one. Only meaningful to the planner.
    """

    name: str
    logical_type: LogicalType
    nullable: bool = True
    default: Any = None
    renamed_from: str | None = None

    def __post_init__(self) -> None:
        _check_identifier(self.name, "column")
        if isinstance(self.default, bytearray):
            object.__setattr__(self, "default", bytes(self.default))
        if self.renamed_from is not None:
            _check_identifier(self.renamed_from, "column")
        if not self.logical_type.accepts(self.default):
            raise ValidationError(
                f"Default {self.default!r} is not a valid {self.logical_type.value} "
                f"for column {self.name!r}"
            )

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def same_definition(self, other: ColumnDescriptor) -> bool:
        """Compare everything except the name and rename hint."""
        return (
            self.logical_type is other.logical_type
            and self.nullable == other.nullable
            and self.default == other.default
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.logical_type.value,
            "nullable": self.nullable,
            "default": encode_value(self.default),
            "renamed_from": self.renamed_from,
        }


@dataclass(frozen=True, slots=True)
class IndexDescriptor:
    """A secondary index on a table."""

    name: str
    columns: tuple[str, ...]
    unique: bool = False

    def __post_init__(self) -> None:
        _check_identifier(self.name, "index")
        object.__setattr__(self, "columns", tuple(self.columns))
        if not self.columns:
            raise ValidationError(f"Index {self.name!r} has no columns")

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "columns": list(self.columns), "unique": self.unique}


@dataclass(frozen=True, slots=True)
class ConstraintDescriptor:
    """A table-level constraint.

    Attributes:
        kind: Constraint kind.
        columns: Constrained columns (empty for CHECK).
        referenced_table: Parent table of a FOREIGN_KEY.
        referenced_columns: Parent columns of a FOREIGN_KEY.
        expression: Boolean SQL expression of a CHECK.
        name: Optional constraint name.
    """

    kind: ConstraintKind
    columns: tuple[str, ...] = ()
    referenced_table: str | None = None
    referenced_columns: tuple[str, ...] = ()
    expression: str | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "referenced_columns", tuple(self.referenced_columns))
        if self.name is not None:
            _check_identifier(self.name, "constraint")
        if self.kind is ConstraintKind.CHECK:
            if not self.expression:
                raise ValidationError("CHECK constraint requires an expression")
            return
        if not self.columns:
            raise ValidationError(f"{self.kind.value} constraint requires columns")
        if self.kind is ConstraintKind.FOREIGN_KEY:
            if self.referenced_table is None:
                raise ValidationError("FOREIGN_KEY constraint requires a referenced table")
            _check_identifier(self.referenced_table, "table")
            if len(self.referenced_columns) != len(self.columns):
                raise ValidationError(
                    "FOREIGN_KEY must reference as many columns as it constrains"
                )

    @classmethod
    def primary_key(cls, *columns: str) -> ConstraintDescriptor:
        return cls(ConstraintKind.PRIMARY_KEY, columns)

    @classmethod
    def unique(cls, *columns: str, name: str | None = None) -> ConstraintDescriptor:
        return cls(ConstraintKind.UNIQUE, columns, name=name)

    @classmethod
    def foreign_key(
        cls,
        columns: Iterable[str],
        referenced_table: str,
        referenced_columns: Iterable[str],
        name: str | None = None,
    ) -> ConstraintDescriptor:
        return cls(
            ConstraintKind.FOREIGN_KEY,
            tuple(columns),
            referenced_table=referenced_table,
            referenced_columns=tuple(referenced_columns),
            name=name,
        )

    @classmethod
    def check(cls, expression: str, name: str | None = None) -> ConstraintDescriptor:
        return cls(ConstraintKind.CHECK, expression=expression, name=name)

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "columns": list(self.columns),
            "referenced_table": self.referenced_table,
            "referenced_columns": list(self.referenced_columns),
            "expression": self.expression,
            "name": self.name,
        }

    def sort_key(self) -> str:
        return repr(sorted(self.to_payload().items()))


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    """Structure of a single table."""

    name: str
    columns: tuple[ColumnDescriptor, ...]
    indexes: frozenset[IndexDescriptor] = field(default_factory=frozenset)
    constraints: frozenset[ConstraintDescriptor] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        _check_identifier(self.name, "table")
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "indexes", frozenset(self.indexes))
        object.__setattr__(self, "constraints", frozenset(self.constraints))

        if not self.columns:
            raise ValidationError(f"Table {self.name!r} has no columns")
        names = [c.name for c in self.columns]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValidationError(
                f"Duplicate columns in table {self.name!r}: {sorted(duplicates)}"
            )

        known = set(names)
        for index in self.indexes:
            missing = set(index.columns) - known
            if missing:
                raise ValidationError(
                    f"Index {index.name!r} on {self.name!r} uses unknown columns {sorted(missing)}"
                )
        primary_keys = 0
        for constraint in self.constraints:
            missing = set(constraint.columns) - known
            if missing:
                raise ValidationError(
                    f"Constraint on {self.name!r} uses unknown columns {sorted(missing)}"
                )
            if constraint.kind is ConstraintKind.PRIMARY_KEY:
                primary_keys += 1
        if primary_keys > 1:
            raise ValidationError(f"Table {self.name!r} declares more than one primary key")

    def column(self, name: str) -> ColumnDescriptor | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def index(self, name: str) -> IndexDescriptor | None:
        for index in self.indexes:
            if index.name == name:
                return index
        return None

    def references(self) -> set[str]:
        """Return the names of tables this table references, itself excluded."""
        return {
            c.referenced_table
            for c in self.constraints
            if c.kind is ConstraintKind.FOREIGN_KEY
            and c.referenced_table is not None
            and c.referenced_table != self.name
        }

    def constrained_columns(self) -> set[str]:
        """Return every column that takes part in a constraint."""
        result: set[str] = set()
        for constraint in self.constraints:
            result.update(constraint.columns)
        return result

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "columns": [c.to_payload() for c in self.columns],
            "indexes": [i.to_payload() for i in sorted(self.indexes, key=lambda i: i.name)],
            "constraints": [
                c.to_payload() for c in sorted(self.constraints, key=lambda c: c.sort_key())
            ],
        }


@dataclass(frozen=True, slots=True)
class SchemaVersion:
    """An immutable, internally consistent snapshot of the store's schema.

    Example:
        >>> users = TableDescriptor("users", (ColumnDescriptor("id", LogicalType.INTEGER),))
        >>> SchemaVersion(VersionId(1), frozenset({users})).table_names
        ('users',)
    """

    version: VersionId
    tables: frozenset[TableDescriptor] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", frozenset(self.tables))
        if self.version < 0:
            raise ValidationError(f"Schema version must be non-negative, got {self.version}")

        by_name: dict[str, TableDescriptor] = {}
        for table in self.tables:
            if table.name in by_name:
                raise ValidationError(f"Duplicate table {table.name!r} in version {self.version}")
            if table.name.startswith(_RESERVED_PREFIXES) or table.name in (
                LEDGER_TABLE,
                LEDGER_AUDIT_TABLE,
            ):
                raise ValidationError(f"Table name {table.name!r} is reserved")
            by_name[table.name] = table

        # Tables and indexes share one case-insensitive namespace in the store.
        owners = {name.lower(): f"table {name!r}" for name in by_name}
        for table in sorted(self.tables, key=lambda t: t.name):
            for index in sorted(table.indexes, key=lambda i: i.name):
                holder = owners.get(index.name.lower())
                if holder is not None:
                    raise ValidationError(
                        f"Index {index.name!r} on {table.name!r} clashes with {holder} "
                        f"in version {self.version}"
                    )
                owners[index.name.lower()] = f"index on {table.name!r}"

        for table in self.tables:
            for constraint in table.constraints:
                if constraint.kind is not ConstraintKind.FOREIGN_KEY:
                    continue
                parent = by_name.get(constraint.referenced_table or "")
                if parent is None:
                    raise ValidationError(
                        f"Table {table.name!r} references unknown table "
                        f"{constraint.referenced_table!r}"
                    )
                missing = set(constraint.referenced_columns) - set(parent.column_names)
                if missing:
                    raise ValidationError(
                        f"Table {table.name!r} references unknown columns "
                        f"{sorted(missing)} of {parent.name!r}"
                    )

    def table(self, name: str) -> TableDescriptor | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(sorted(t.name for t in self.tables))

    def __iter__(self) -> Iterator[TableDescriptor]:
        return iter(sorted(self.tables, key=lambda t: t.name))
