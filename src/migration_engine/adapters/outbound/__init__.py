"""Outbound adapters - implementations of outbound ports.

These adapters drive a SQLite store file through the standard library
``sqlite3`` module.
"""

from migration_engine.adapters.outbound.sqlite_connection import (
    SQLiteConnectionFactory,
    SQLiteStoreConnection,
    is_busy_error,
)
from migration_engine.adapters.outbound.sqlite_dialect import SQLiteDialect
from migration_engine.adapters.outbound.sqlite_schema_inspector import SQLiteSchemaInspector

__all__ = [
    "SQLiteConnectionFactory",
    "SQLiteDialect",
    "SQLiteSchemaInspector",
    "SQLiteStoreConnection",
    "is_busy_error",
]
