"""Domain entities for the migration engine.

Exports:
    Schema:
        - ColumnDescriptor, IndexDescriptor, ConstraintDescriptor
        - TableDescriptor: Structure of one table
        - SchemaVersion: Immutable versioned set of tables

    Steps:
        - MigrationStep: Base class for all steps
        - CreateTable, DropTable, AddColumn, DropColumn, RenameColumn,
          ChangeColumnType, AddIndex, DropIndex, RebuildTable
        - ColumnProjection, ProjectionEntry: Row mapping for rebuilds
        - MigrationPlan: Ordered steps between two versions

    Records:
        - MigrationRecord: Ledger entry for a step
        - MigrationReport: Outcome of an executor run
"""

from migration_engine.domain.entities.migration_record import (
    MigrationRecord,
    MigrationReport,
    utc_now,
)
from migration_engine.domain.entities.migration_step import (
    AddColumn,
    AddIndex,
    ChangeColumnType,
    ColumnProjection,
    CreateTable,
    DropColumn,
    DropIndex,
    DropTable,
    MigrationPlan,
    MigrationStep,
    ProjectionEntry,
    RebuildTable,
    RenameColumn,
)
from migration_engine.domain.entities.schema import (
    ColumnDescriptor,
    ConstraintDescriptor,
    IndexDescriptor,
    SchemaVersion,
    TableDescriptor,
)

__all__ = [
    # Schema
    "ColumnDescriptor",
    "ConstraintDescriptor",
    "IndexDescriptor",
    "SchemaVersion",
    "TableDescriptor",
    # Steps
    "AddColumn",
    "AddIndex",
    "ChangeColumnType",
    "ColumnProjection",
    "CreateTable",
    "DropColumn",
    "DropIndex",
    "DropTable",
    "MigrationPlan",
    "MigrationStep",
    "ProjectionEntry",
    "RebuildTable",
    "RenameColumn",
    # Records
    "MigrationRecord",
    "MigrationReport",
    "utc_now",
]
