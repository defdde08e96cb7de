"""Application layer for the migration engine.

The application layer orchestrates domain logic to fulfill use cases.

Exports:
    Migrator:
        - Migrator: Main entry point for planning and applying migrations
    Executor:
        - MigrationExecutor: Applies plans step by step through the gate
        - CancellationToken: Cooperative cancellation between steps
"""

from migration_engine.application.migration_executor import (
    CancellationToken,
    MigrationExecutor,
)
from migration_engine.application.migrator import Migrator

__all__ = [
    "CancellationToken",
    "MigrationExecutor",
    "Migrator",
]
