"""Reads the effective schema of a SQLite store back into descriptors.

Used to verify that applying a plan produced the declared schema, and to
describe a store whose history predates the engine.

Recovered:
    - columns, in declared order, with logical type, nullability, default
    - secondary indexes created with CREATE INDEX
    - PRIMARY KEY, UNIQUE and FOREIGN KEY constraints

Not recovered (SQLite keeps them only inside the CREATE TABLE text):
    - CHECK constraints
    - constraint names
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from migration_engine.adapters.outbound.sqlite_dialect import SQLiteDialect
from migration_engine.domain.entities import (
    ColumnDescriptor,
    ConstraintDescriptor,
    IndexDescriptor,
    TableDescriptor,
)
from migration_engine.domain.exceptions import ValidationError
from migration_engine.domain.value_objects import (
    LEDGER_AUDIT_TABLE,
    LEDGER_TABLE,
    SHADOW_PREFIX,
    LogicalType,
)
from migration_engine.ports.outbound.store_connection import StoreConnection

_INTERNAL = (LEDGER_TABLE, LEDGER_AUDIT_TABLE)


class SQLiteSchemaInspector:
    """Builds TableDescriptors from SQLite's schema pragmas."""

    def __init__(self) -> None:
        self._dialect = SQLiteDialect()

    def table_names(self, conn: StoreConnection) -> list[str]:
        """Return user tables, excluding engine-internal and shadow tables."""
        rows = conn.execute_statement(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        return [
            row["name"]
            for row in rows
            if not row["name"].startswith(("sqlite_", SHADOW_PREFIX))
            and row["name"] not in _INTERNAL
        ]

    def inspect(self, conn: StoreConnection) -> dict[str, TableDescriptor]:
        """Describe every user table of the store, keyed by table name."""
        return {name: self.describe_table(conn, name) for name in self.table_names(conn)}

    def describe_table(self, conn: StoreConnection, table: str) -> TableDescriptor:
        quoted = self._dialect.quote(table)
        info = conn.execute_statement(f"PRAGMA table_info({quoted})")
        if not info:
            raise ValidationError(f"Table {table!r} does not exist")

        columns = []
        primary_key: list[tuple[int, str]] = []
        for row in info:
            logical_type = _logical_type(table, row["name"], row["type"])
            columns.append(
                ColumnDescriptor(
                    name=row["name"],
                    logical_type=logical_type,
                    nullable=not row["notnull"],
                    default=parse_default(row["dflt_value"], logical_type),
                )
            )
            if row["pk"]:
                primary_key.append((row["pk"], row["name"]))

        constraints: set[ConstraintDescriptor] = set()
        if primary_key:
            constraints.add(
                ConstraintDescriptor.primary_key(*(name for _, name in sorted(primary_key)))
            )

        indexes: set[IndexDescriptor] = set()
        for entry in conn.execute_statement(f"PRAGMA index_list({quoted})"):
            index_columns = tuple(
                row["name"]
                for row in sorted(
                    conn.execute_statement(
                        f"PRAGMA index_info({self._dialect.quote(entry['name'])})"
                    ),
                    key=lambda r: r["seqno"],
                )
            )
            if entry["origin"] == "c":
                indexes.add(
                    IndexDescriptor(entry["name"], index_columns, unique=bool(entry["unique"]))
                )
            elif entry["origin"] == "u":
                constraints.add(ConstraintDescriptor.unique(*index_columns))

        foreign_keys: dict[int, list[dict[str, Any]]] = defaultdict(list)
        for row in conn.execute_statement(f"PRAGMA foreign_key_list({quoted})"):
            foreign_keys[row["id"]].append(row)
        for rows in foreign_keys.values():
            rows.sort(key=lambda r: r["seq"])
            constraints.add(
                ConstraintDescriptor.foreign_key(
                    [r["from"] for r in rows],
                    rows[0]["table"],
                    [r["to"] for r in rows],
                )
            )

        return TableDescriptor(
            name=table,
            columns=tuple(columns),
            indexes=frozenset(indexes),
            constraints=frozenset(constraints),
        )


def _logical_type(table: str, column: str, declared: str) -> LogicalType:
    try:
        return LogicalType[declared.strip().upper()]
    except KeyError:
        raise ValidationError(
            f"Column {table}.{column} has declared type {declared!r}, "
            "which is not a logical type"
        ) from None


def parse_default(literal: str | None, logical_type: LogicalType) -> Any:
    """Convert a default as SQLite reports it (SQL text) into a Python value."""
    if literal is None or literal.upper() == "NULL":
        return None
    if literal.startswith("'") and literal.endswith("'"):
        return literal[1:-1].replace("''", "'")
    if literal[:2].upper() == "X'" and literal.endswith("'"):
        return bytes.fromhex(literal[2:-1])

    if logical_type is LogicalType.BOOLEAN:
        return bool(int(literal))
    if logical_type is LogicalType.REAL:
        return float(literal)
    try:
        return int(literal)
    except ValueError:
        return float(literal)
