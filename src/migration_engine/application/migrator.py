"""Migrator - unified entry point for planning and applying migrations.

Usage:
    from migration_engine.infrastructure.container import build_container
    from migration_engine.application import Migrator

    container = build_container(config)
    migrator = container.resolve(Migrator)

    plan = migrator.plan(v1, v2)
    report = migrator.migrate(v1, v2)
    print(migrator.current_version(), len(report.applied))
"""

from __future__ import annotations

from migration_engine.adapters.outbound.sqlite_schema_inspector import SQLiteSchemaInspector
from migration_engine.application.migration_executor import (
    CancellationToken,
    MigrationExecutor,
    RecordCallback,
)
from migration_engine.domain.entities import (
    MigrationPlan,
    MigrationRecord,
    MigrationReport,
    SchemaVersion,
    TableDescriptor,
)
from migration_engine.domain.services.concurrency_gate import ConcurrencyGate
from migration_engine.domain.services.migration_planner import MigrationPlanner
from migration_engine.domain.value_objects import StepId, VersionId
from migration_engine.infrastructure.tracing import trace_span


class Migrator:
    """Plans and applies schema migrations against one store."""

    def __init__(
        self,
        gate: ConcurrencyGate,
        planner: MigrationPlanner,
        executor: MigrationExecutor,
        inspector: SQLiteSchemaInspector,
    ) -> None:
        self._gate = gate
        self._planner = planner
        self._executor = executor
        self._inspector = inspector

    def plan(self, old: SchemaVersion, new: SchemaVersion) -> MigrationPlan:
        with trace_span("migration.plan", source_version=old.version, target_version=new.version):
            return self._planner.plan(old, new)

    def migrate(
        self,
        old: SchemaVersion,
        new: SchemaVersion,
        *,
        cancel: CancellationToken | None = None,
        on_record: RecordCallback | None = None,
    ) -> MigrationReport:
        """Plan the move from ``old`` to ``new`` and apply it."""
        return self._executor.apply(self.plan(old, new), cancel=cancel, on_record=on_record)

    def current_version(self) -> VersionId:
        return self._executor.current_version()

    def history(self) -> list[MigrationRecord]:
        return self._executor.history()

    def reset_failed(self, step_id: StepId, *, operator: str, reason: str) -> MigrationRecord:
        return self._executor.reset_failed(step_id, operator=operator, reason=reason)

    def effective_schema(self) -> dict[str, TableDescriptor]:
        """Describe the tables actually present in the store."""
        with self._gate.read_snapshot() as conn:
            return self._inspector.inspect(conn)

    def close(self) -> None:
        self._gate.close()
