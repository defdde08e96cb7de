"""Domain services for the migration engine.

Services implement the logic that doesn't naturally fit within a single
entity: planning, ledger bookkeeping, write serialization and retries.
"""

from migration_engine.domain.services.concurrency_gate import ConcurrencyGate
from migration_engine.domain.services.dependency_graph import topological_order
from migration_engine.domain.services.migration_ledger import MigrationLedger
from migration_engine.domain.services.migration_planner import MigrationPlanner
from migration_engine.domain.services.retry import RetryResult, retry_on_busy

__all__ = [
    "ConcurrencyGate",
    "MigrationLedger",
    "MigrationPlanner",
    "RetryResult",
    "retry_on_busy",
    "topological_order",
]
