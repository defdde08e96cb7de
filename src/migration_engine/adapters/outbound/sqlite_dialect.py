"""SQLite rendering of migration statements.

Declared column types are the upper-cased logical type names, which SQLite
keeps verbatim in the schema. That makes the mapping reversible: the schema
inspector reads ``PRAGMA table_info`` and recovers the logical type exactly.

Resulting affinities:

    INTEGER   -> INTEGER
    REAL      -> REAL
    TEXT      -> TEXT
    BLOB      -> BLOB
    BOOLEAN   -> NUMERIC (stored as 0/1)
    TIMESTAMP -> NUMERIC (ISO-8601 text stays text)
"""

from __future__ import annotations

from typing import Any, Final

from migration_engine.domain.entities import (
    ColumnDescriptor,
    ColumnProjection,
    ConstraintDescriptor,
    IndexDescriptor,
    ProjectionEntry,
    TableDescriptor,
)
from migration_engine.domain.value_objects import (
    ConstraintKind,
    ConversionRule,
    LogicalType,
)

_DECLARED_TYPE: Final[dict[LogicalType, str]] = {t: t.name for t in LogicalType}

_CAST_TARGET: Final[dict[LogicalType, str]] = {
    LogicalType.INTEGER: "INTEGER",
    LogicalType.REAL: "REAL",
    LogicalType.TEXT: "TEXT",
    LogicalType.BLOB: "BLOB",
    LogicalType.BOOLEAN: "INTEGER",
    LogicalType.TIMESTAMP: "TEXT",
}

_TRUE_WORDS: Final[str] = "('1', 'true', 't', 'yes', 'y')"


class SQLiteDialect:
    """Renders migration statements for SQLite 3.35+.

    Example:
        >>> dialect = SQLiteDialect()
        >>> dialect.drop_index("idx_users_email")
        'DROP INDEX "idx_users_email"'
    """

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def literal(self, value: Any) -> str:
        """Render a Python value as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return repr(value)
        if isinstance(value, (bytes, bytearray)):
            return f"X'{bytes(value).hex()}'"
        text = str(value).replace("'", "''")
        return f"'{text}'"

    def column_definition(self, column: ColumnDescriptor) -> str:
        parts = [self.quote(column.name), _DECLARED_TYPE[column.logical_type]]
        if not column.nullable:
            parts.append("NOT NULL")
        if column.has_default:
            parts.append(f"DEFAULT {self.literal(column.default)}")
        return " ".join(parts)

    def constraint_definition(self, constraint: ConstraintDescriptor) -> str:
        prefix = f"CONSTRAINT {self.quote(constraint.name)} " if constraint.name else ""
        columns = ", ".join(self.quote(c) for c in constraint.columns)
        if constraint.kind is ConstraintKind.PRIMARY_KEY:
            return f"{prefix}PRIMARY KEY ({columns})"
        if constraint.kind is ConstraintKind.UNIQUE:
            return f"{prefix}UNIQUE ({columns})"
        if constraint.kind is ConstraintKind.FOREIGN_KEY:
            parent = self.quote(constraint.referenced_table or "")
            parent_columns = ", ".join(self.quote(c) for c in constraint.referenced_columns)
            return f"{prefix}FOREIGN KEY ({columns}) REFERENCES {parent} ({parent_columns})"
        return f"{prefix}CHECK ({constraint.expression})"

    def create_table(self, table: TableDescriptor, name: str | None = None) -> str:
        definitions = [self.column_definition(c) for c in table.columns]
        constraints = sorted(table.constraints, key=lambda c: c.sort_key())
        definitions.extend(self.constraint_definition(c) for c in constraints)
        body = ",\n    ".join(definitions)
        return f"CREATE TABLE {self.quote(name or table.name)} (\n    {body}\n)"

    def drop_table(self, name: str) -> str:
        return f"DROP TABLE {self.quote(name)}"

    def rename_table(self, old_name: str, new_name: str) -> str:
        return f"ALTER TABLE {self.quote(old_name)} RENAME TO {self.quote(new_name)}"

    def add_column(self, table: str, column: ColumnDescriptor) -> str:
        return f"ALTER TABLE {self.quote(table)} ADD COLUMN {self.column_definition(column)}"

    def drop_column(self, table: str, column_name: str) -> str:
        return f"ALTER TABLE {self.quote(table)} DROP COLUMN {self.quote(column_name)}"

    def create_index(self, table: str, index: IndexDescriptor) -> str:
        unique = "UNIQUE " if index.unique else ""
        columns = ", ".join(self.quote(c) for c in index.columns)
        return f"CREATE {unique}INDEX {self.quote(index.name)} ON {self.quote(table)} ({columns})"

    def drop_index(self, name: str) -> str:
        return f"DROP INDEX {self.quote(name)}"

    def projection_expression(self, entry: ProjectionEntry) -> str:
        """Render the SELECT expression that produces one target column."""
        if entry.source is None:
            return self.literal(entry.default)

        column = self.quote(entry.source)
        rule = entry.rule
        if rule is ConversionRule.IDENTITY:
            expression = column
        elif rule is ConversionRule.CAST:
            expression = f"CAST({column} AS {_CAST_TARGET[entry.target_type]})"
        elif rule is ConversionRule.TO_BOOLEAN:
            expression = (
                f"CASE WHEN {column} IS NULL THEN NULL "
                f"WHEN {column} <> 0 THEN 1 ELSE 0 END"
            )
        elif rule is ConversionRule.TEXT_TO_BOOLEAN:
            expression = (
                f"CASE WHEN {column} IS NULL THEN NULL "
                f"WHEN lower(CAST({column} AS TEXT)) IN {_TRUE_WORDS} THEN 1 ELSE 0 END"
            )
        elif rule is ConversionRule.EPOCH_TO_TIMESTAMP:
            expression = f"strftime('%Y-%m-%dT%H:%M:%S', {column}, 'unixepoch')"
        else:
            expression = (
                f"CAST(strftime('%s', {column}) AS {_CAST_TARGET[entry.target_type]})"
            )

        if entry.not_null and entry.default is not None:
            expression = f"COALESCE({expression}, {self.literal(entry.default)})"
        return expression

    def copy_rows(
        self,
        source: str,
        target: str,
        projection: ColumnProjection,
        single_row: bool = False,
    ) -> str:
        targets = ", ".join(self.quote(e.target) for e in projection.entries)
        expressions = ", ".join(self.projection_expression(e) for e in projection.entries)
        where = " WHERE rowid = ?" if single_row else ""
        return (
            f"INSERT INTO {self.quote(target)} ({targets}) "
            f"SELECT {expressions} FROM {self.quote(source)}{where} ORDER BY rowid"
        )

    def count_rows(self, table: str) -> str:
        return f"SELECT count(*) AS row_count FROM {self.quote(table)}"

    def select_row_ids(self, table: str) -> str:
        return f"SELECT rowid AS row_id FROM {self.quote(table)} ORDER BY rowid"

    def select_row(self, table: str) -> str:
        return f"SELECT * FROM {self.quote(table)} WHERE rowid = ?"

    def savepoint(self, name: str) -> str:
        return f"SAVEPOINT {self.quote(name)}"

    def release_savepoint(self, name: str) -> str:
        return f"RELEASE SAVEPOINT {self.quote(name)}"

    def rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {self.quote(name)}"

    def set_foreign_keys(self, enabled: bool) -> str:
        return f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'}"

    def foreign_keys_enabled(self) -> str:
        return "PRAGMA foreign_keys"

    def foreign_key_check(self, table: str | None = None) -> str:
        if table is None:
            return "PRAGMA foreign_key_check"
        return f"PRAGMA foreign_key_check({self.quote(table)})"

    def read_version(self) -> str:
        return "PRAGMA user_version"

    def write_version(self, version: int) -> str:
        return f"PRAGMA user_version = {int(version)}"
