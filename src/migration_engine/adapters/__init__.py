"""Adapters layer - concrete implementations of port interfaces.

Outbound adapters implement the store the engine migrates: SQLite
connections, the SQLite dialect, and a schema inspector.
"""

from migration_engine.adapters.outbound import (
    SQLiteConnectionFactory,
    SQLiteDialect,
    SQLiteSchemaInspector,
    SQLiteStoreConnection,
)

__all__ = [
    # Outbound adapters
    "SQLiteConnectionFactory",
    "SQLiteDialect",
    "SQLiteSchemaInspector",
    "SQLiteStoreConnection",
]
