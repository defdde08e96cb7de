"""Migration steps and the plan that orders them.

Each step is an immutable tagged variant carrying everything needed to
apply it, so a plan can be checksummed, logged, and re-applied after a
crash without consulting any other state.

Checksums are SHA-256 over the canonical JSON payload of a step (sorted
keys, no whitespace), step identifier included. Any change to a step's
content under the same identifier is therefore detected as schema drift.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from functools import cached_property
from typing import Any, ClassVar

from migration_engine.domain.entities.schema import (
    ColumnDescriptor,
    IndexDescriptor,
    TableDescriptor,
    encode_value,
)
from migration_engine.domain.value_objects import (
    ConversionRule,
    LogicalType,
    StepId,
    StepKind,
    VersionId,
    conversion_rule,
)


@dataclass(frozen=True, slots=True)
class ProjectionEntry:
    """How one column of a rebuilt table gets its value.

    Attributes:
        target: Column name in the new table.
        target_type: Logical type of the new column.
        source: Column name in the old table, or None for an introduced
            column populated from its default.
        source_type: Logical type of the old column (None when introduced).
        default: Default of the new column; used for introduced columns and
            to fill NULLs copied into a NOT NULL column.
        not_null: Whether the new column is NOT NULL.
    """

    target: str
    target_type: LogicalType
    source: str | None
    source_type: LogicalType | None
    default: Any
    not_null: bool

    @property
    def introduced(self) -> bool:
        return self.source is None

    @property
    def rule(self) -> ConversionRule:
        if self.source_type is None:
            return ConversionRule.IDENTITY
        return conversion_rule(self.source_type, self.target_type)

    def to_payload(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "target_type": self.target_type.value,
            "source": self.source,
            "source_type": self.source_type.value if self.source_type else None,
            "default": encode_value(self.default),
            "not_null": self.not_null,
        }


@dataclass(frozen=True, slots=True)
class ColumnProjection:
    """Explicit old-to-new column mapping for a table rebuild.

    Every column of the new table has exactly one entry. Old columns that no
    entry names are discarded by the copy.
    """

    entries: tuple[ProjectionEntry, ...]

    @classmethod
    def between(cls, old: TableDescriptor, new: TableDescriptor) -> ColumnProjection:
        """Derive the projection from two descriptors of the same table.

        A new column takes its value from the old column named by its
        ``renamed_from`` hint, else from the old column with the same name,
        else from its default.
        """
        entries = []
        for column in new.columns:
            source: ColumnDescriptor | None = None
            if column.renamed_from is not None:
                source = old.column(column.renamed_from)
            if source is None:
                source = old.column(column.name)
            entries.append(
                ProjectionEntry(
                    target=column.name,
                    target_type=column.logical_type,
                    source=source.name if source else None,
                    source_type=source.logical_type if source else None,
                    default=column.default,
                    not_null=not column.nullable,
                )
            )
        return cls(tuple(entries))

    def source_of(self, target: str) -> str | None:
        for entry in self.entries:
            if entry.target == target:
                return entry.source
        return None

    def discarded(self, old: TableDescriptor) -> tuple[str, ...]:
        used = {e.source for e in self.entries if e.source is not None}
        return tuple(name for name in old.column_names if name not in used)

    def to_payload(self) -> list[dict[str, Any]]:
        return [e.to_payload() for e in self.entries]


@dataclass(frozen=True, slots=True)
class MigrationStep:
    """Base class for all migration steps.

    Attributes:
        step_id: Ledger identifier of the step.
        table: Table the step operates on.
    """

    kind: ClassVar[StepKind]

    step_id: StepId
    table: str

    def payload(self) -> dict[str, Any]:
        """Return the step-specific content that the checksum covers."""
        return {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "kind": self.kind.value,
            "table": self.table,
            **self.payload(),
        }

    @property
    def checksum(self) -> str:
        canonical = json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def describe(self) -> str:
        return f"{self.kind.value} {self.table}"


@dataclass(frozen=True, slots=True)
class CreateTable(MigrationStep):
    """Create a table that does not exist yet."""

    kind: ClassVar[StepKind] = StepKind.CREATE_TABLE

    descriptor: TableDescriptor

    def payload(self) -> dict[str, Any]:
        return {"descriptor": self.descriptor.to_payload()}


@dataclass(frozen=True, slots=True)
class DropTable(MigrationStep):
    """Drop a table and its indices."""

    kind: ClassVar[StepKind] = StepKind.DROP_TABLE

    descriptor: TableDescriptor

    def payload(self) -> dict[str, Any]:
        return {"descriptor": self.descriptor.to_payload()}


@dataclass(frozen=True, slots=True)
class AddColumn(MigrationStep):
    """Append a column to an existing table."""

    kind: ClassVar[StepKind] = StepKind.ADD_COLUMN

    column: ColumnDescriptor

    def payload(self) -> dict[str, Any]:
        return {"column": self.column.to_payload()}

    def describe(self) -> str:
        return f"add column {self.table}.{self.column.name}"


@dataclass(frozen=True, slots=True)
class DropColumn(MigrationStep):
    """Drop a column that takes part in no index or constraint."""

    kind: ClassVar[StepKind] = StepKind.DROP_COLUMN

    column_name: str

    def payload(self) -> dict[str, Any]:
        return {"column_name": self.column_name}

    def describe(self) -> str:
        return f"drop column {self.table}.{self.column_name}"


@dataclass(frozen=True, slots=True)
class RenameColumn(MigrationStep):
    """Rename a column. Requires a rebuild on this engine class."""

    kind: ClassVar[StepKind] = StepKind.RENAME_COLUMN

    old_name: str
    new_name: str

    def payload(self) -> dict[str, Any]:
        return {"old_name": self.old_name, "new_name": self.new_name}


@dataclass(frozen=True, slots=True)
class ChangeColumnType(MigrationStep):
    """Change a column's logical type. Requires a rebuild on this engine class."""

    kind: ClassVar[StepKind] = StepKind.CHANGE_COLUMN_TYPE

    column_name: str
    old_type: LogicalType
    new_type: LogicalType

    def payload(self) -> dict[str, Any]:
        return {
            "column_name": self.column_name,
            "old_type": self.old_type.value,
            "new_type": self.new_type.value,
        }


@dataclass(frozen=True, slots=True)
class AddIndex(MigrationStep):
    """Create a secondary index."""

    kind: ClassVar[StepKind] = StepKind.ADD_INDEX

    index: IndexDescriptor

    def payload(self) -> dict[str, Any]:
        return {"index": self.index.to_payload()}

    def describe(self) -> str:
        return f"add index {self.index.name} on {self.table}"


@dataclass(frozen=True, slots=True)
class DropIndex(MigrationStep):
    """Drop a secondary index."""

    kind: ClassVar[StepKind] = StepKind.DROP_INDEX

    index_name: str

    def payload(self) -> dict[str, Any]:
        return {"index_name": self.index_name}

    def describe(self) -> str:
        return f"drop index {self.index_name} on {self.table}"


@dataclass(frozen=True, slots=True)
class RebuildTable(MigrationStep):
    """Rebuild a table through a shadow copy and atomic swap."""

    kind: ClassVar[StepKind] = StepKind.REBUILD_TABLE

    old: TableDescriptor
    new: TableDescriptor
    projection: ColumnProjection

    def payload(self) -> dict[str, Any]:
        return {
            "old": self.old.to_payload(),
            "new": self.new.to_payload(),
            "projection": self.projection.to_payload(),
        }


@dataclass(frozen=True)
class MigrationPlan:
    """Ordered steps that move a store from one schema version to the next."""

    source_version: VersionId
    target_version: VersionId
    steps: tuple[MigrationStep, ...]

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @cached_property
    def step_ids(self) -> tuple[StepId, ...]:
        return tuple(step.step_id for step in self.steps)
