"""Outbound ports - interfaces for external dependencies.

Outbound ports define contracts for the embedded store the migration
engine drives: connections with explicit transactions, and the SQL
dialect used to talk to it.
"""

from migration_engine.ports.outbound.sql_dialect import SqlDialect
from migration_engine.ports.outbound.store_connection import (
    ConnectionFactory,
    Row,
    StoreConnection,
)

__all__ = [
    "ConnectionFactory",
    "Row",
    "SqlDialect",
    "StoreConnection",
]
