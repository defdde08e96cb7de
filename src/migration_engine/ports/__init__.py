"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts:
- Outbound ports: Dependencies on the embedded store (StoreConnection,
  ConnectionFactory, SqlDialect)

Adapters implement these ports with concrete functionality.
"""

from migration_engine.ports.outbound import (
    ConnectionFactory,
    Row,
    SqlDialect,
    StoreConnection,
)

__all__ = [
    # Outbound ports
    "ConnectionFactory",
    "Row",
    "SqlDialect",
    "StoreConnection",
]
