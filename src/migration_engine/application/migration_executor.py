"""Migration executor: applies a plan step by step.

Each step moves through PENDING -> APPLYING -> {APPLIED, FAILED}:

    1. write txn   ledger.check + ledger.begin       (APPLYING committed)
    2. write txn   step statements + mark_applied    (one atomic commit)
       on error:   rollback, then
    3. write txn   mark_failed                       (FAILED committed)

An APPLYING record left behind by a crash is found by step 1 of the next
run and the step is re-run from scratch. A lock timeout in step 2 leaves
the record APPLYING as well, since nothing was attempted.

RebuildTable, inside one write transaction with foreign-key enforcement
switched off on the writer connection:

    CREATE TABLE _rebuild_<table>_<hex> (new definition)
    INSERT INTO shadow SELECT <projection> FROM table ORDER BY rowid
    verify row counts
    DROP TABLE table
    ALTER TABLE shadow RENAME TO table
    CREATE INDEX ... (every index of the new definition)
    PRAGMA foreign_key_check

When the bulk copy violates a constraint, the copy is replayed one row at a
time inside a savepoint to find the offending row, and the step fails with
that row's identity and values. The original table is left untouched.
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import replace
from typing import Any, Callable

from migration_engine.domain.entities import (
    AddColumn,
    AddIndex,
    CreateTable,
    DropColumn,
    DropIndex,
    DropTable,
    MigrationPlan,
    MigrationRecord,
    MigrationReport,
    MigrationStep,
    RebuildTable,
)
from migration_engine.domain.exceptions import (
    LockTimeoutError,
    MigrationCancelledError,
    MigrationEngineError,
    SchemaDriftError,
    StatementError,
    ValidationError,
)
from migration_engine.domain.services.concurrency_gate import ConcurrencyGate
from migration_engine.domain.services.migration_ledger import MigrationLedger
from migration_engine.domain.value_objects import (
    SHADOW_PREFIX,
    LedgerDecision,
    RetryPolicy,
    StepId,
    StepKind,
    StepStatus,
    VersionId,
)
from migration_engine.infrastructure.logging import get_logger
from migration_engine.infrastructure.metrics import MetricsRegistry, get_metrics
from migration_engine.infrastructure.tracing import trace_span
from migration_engine.ports.outbound.sql_dialect import SqlDialect
from migration_engine.ports.outbound.store_connection import StoreConnection

logger = get_logger(__name__)

RecordCallback = Callable[[MigrationRecord], None]

_ROW_CHECK_SAVEPOINT = "migration_row_check"


class CancellationToken:
    """Cooperative cancellation flag, checked before each step."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def default_shadow_name(table: str) -> str:
    return f"{SHADOW_PREFIX}{table}_{uuid.uuid4().hex}"


class MigrationExecutor:
    """Applies migration plans through the concurrency gate.

    Usage:
        executor = MigrationExecutor(gate, MigrationLedger(), SQLiteDialect(), policy)
        report = executor.apply(plan)

    Thread Safety:
        Steps are serialized by the gate's write lock. Readers using
        ``gate.read_snapshot`` see each step either not at all or in full.
    """

    def __init__(
        self,
        gate: ConcurrencyGate,
        ledger: MigrationLedger,
        dialect: SqlDialect,
        policy: RetryPolicy,
        *,
        metrics: MetricsRegistry | None = None,
        shadow_names: Callable[[str], str] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            gate: Serializes every write the executor makes.
            ledger: Records step outcomes in the store.
            dialect: Renders the statements for the store engine.
            policy: Write-lock retry policy used for every transaction.
            metrics: Metrics registry (the global one if omitted).
            shadow_names: Generates shadow table names for rebuilds.
        """
        self._gate = gate
        self._ledger = ledger
        self._dialect = dialect
        self._policy = policy
        self._metrics = metrics or get_metrics()
        self._shadow_names = shadow_names or default_shadow_name

    def apply(
        self,
        plan: MigrationPlan,
        *,
        cancel: CancellationToken | None = None,
        on_record: RecordCallback | None = None,
    ) -> MigrationReport:
        """Apply every step of ``plan`` in order.

        Steps already APPLIED with the same checksum are skipped, so a
        completed or interrupted plan can be applied again safely.

        Args:
            plan: The plan to apply.
            cancel: Checked before each step; a step in progress always
                runs to completion.
            on_record: Receives every finalized record, skipped ones included.

        Returns:
            The records of this run.

        Raises:
            SchemaDriftError: If the store is at neither end of the plan or
                the ledger disagrees with a step.
            ValidationError: If a step cannot be applied.
            LockTimeoutError: If the write lock could not be acquired.
            MigrationCancelledError: If ``cancel`` was set between steps.
        """
        report = MigrationReport(plan.source_version, plan.target_version)
        log = logger.bind(source_version=plan.source_version, target_version=plan.target_version)

        with trace_span(
            "migration.apply",
            source_version=plan.source_version,
            target_version=plan.target_version,
            steps=len(plan),
        ):
            if plan.steps:
                self._check_cancelled(cancel, plan.steps[0], log)
            with self._gate.write_transaction(self._policy) as conn:
                self._ledger.ensure_table(conn)
                current = self._read_version(conn)

            if current not in (plan.source_version, plan.target_version):
                raise SchemaDriftError(
                    f"Store is at version {current}; plan moves {plan.source_version} "
                    f"-> {plan.target_version}"
                )

            log.info("migration_started", current_version=current, steps=len(plan))
            for step in plan:
                self._check_cancelled(cancel, step, log)
                self._apply_step(step, report, on_record)

            if current != plan.target_version:
                with self._gate.write_transaction(self._policy) as conn:
                    conn.execute_statement(self._dialect.write_version(plan.target_version))

        log.info(
            "migration_completed",
            applied=len(report.applied),
            skipped=len(report.skipped),
        )
        return report

    def current_version(self) -> VersionId:
        """Return the store's schema version, read from a snapshot."""
        with self._gate.read_snapshot() as conn:
            return self._read_version(conn)

    def history(self) -> list[MigrationRecord]:
        """Return every ledger record, ordered by step identifier."""
        with self._gate.read_snapshot() as conn:
            if not self._ledger.exists(conn):
                return []
            return self._ledger.records(conn)

    def reset_failed(self, step_id: StepId, *, operator: str, reason: str) -> MigrationRecord:
        """Remove a FAILED ledger record, leaving an audit entry behind."""
        with self._gate.write_transaction(self._policy) as conn:
            self._ledger.ensure_table(conn)
            return self._ledger.reset_failed(conn, step_id, operator=operator, reason=reason)

    def _check_cancelled(
        self, cancel: CancellationToken | None, step: MigrationStep, log: Any
    ) -> None:
        if cancel is not None and cancel.cancelled:
            log.info("migration_cancelled", next_step_id=step.step_id)
            raise MigrationCancelledError(
                f"Migration cancelled before step {step.step_id}",
                next_step_id=step.step_id,
            )

    def _apply_step(
        self,
        step: MigrationStep,
        report: MigrationReport,
        on_record: RecordCallback | None,
    ) -> None:
        kind = step.kind.value
        log = logger.bind(step_id=step.step_id, kind=kind, table=step.table)

        if step.kind in (StepKind.RENAME_COLUMN, StepKind.CHANGE_COLUMN_TYPE):
            raise ValidationError(
                f"{kind} cannot run in place on this store; express it as a table rebuild",
                step_id=step.step_id,
            )

        with self._gate.write_transaction(self._policy) as conn:
            existing = self._ledger.get(conn, step.step_id)
            decision = self._ledger.check(conn, step)
            if decision is not LedgerDecision.SKIP:
                record = self._ledger.begin(conn, step, decision)

        if decision is LedgerDecision.SKIP and existing is not None:
            log.debug("step_skipped")
            self._metrics.steps_total.labels(kind=kind, status="skipped").inc()
            self._emit(replace(existing, skipped=True), report, on_record)
            return
        if decision is LedgerDecision.RETRY and existing is not None:
            log.warning("step_retried", previous_status=existing.status.value)

        setup: tuple[str, ...] = ()
        teardown: tuple[str, ...] = ()
        if isinstance(step, RebuildTable):
            setup = (self._dialect.set_foreign_keys(False),)
            teardown = (self._dialect.set_foreign_keys(True),)

        started = time.perf_counter()
        try:
            with trace_span(f"migration.step.{kind}", step_id=step.step_id, table=step.table):
                with self._gate.write_transaction(
                    self._policy, setup=setup, teardown=teardown
                ) as conn:
                    copied = self._run_step(conn, step)
                    applied = self._ledger.mark_applied(conn, record)
        except LockTimeoutError:
            log.warning("step_lock_timeout")
            raise
        except Exception as exc:
            if isinstance(exc, ValidationError) and exc.step_id is None:
                exc.step_id = step.step_id
            failed = self._record_failure(record, exc)
            self._metrics.steps_total.labels(kind=kind, status="failed").inc()
            log.error("step_failed", error=str(exc), error_kind=failed.error_kind)
            self._emit(failed, report, on_record)
            raise

        duration = time.perf_counter() - started
        self._metrics.steps_total.labels(kind=kind, status="applied").inc()
        self._metrics.step_duration_seconds.labels(kind=kind).observe(duration)
        if copied:
            self._metrics.rebuild_rows_copied_total.inc(copied)
        log.info("step_applied", duration=duration, rows_copied=copied)
        self._emit(applied, report, on_record)

    def _record_failure(self, record: MigrationRecord, error: Exception) -> MigrationRecord:
        detail: dict[str, Any] = {}
        if isinstance(error, ValidationError) and error.row_id is not None:
            detail = {"row_id": error.row_id, "row": error.row}
        try:
            with self._gate.write_transaction(self._policy) as conn:
                return self._ledger.mark_failed(conn, record, error, detail)
        except MigrationEngineError:
            # The record stays APPLYING and the step is retried next run.
            logger.error("ledger_mark_failed_failed", step_id=record.step_id, exc_info=True)
            return record.transition(
                StepStatus.FAILED,
                error_kind=getattr(error, "kind", type(error).__name__),
                detail={"message": str(error), **detail},
            )

    def _emit(
        self,
        record: MigrationRecord,
        report: MigrationReport,
        on_record: RecordCallback | None,
    ) -> None:
        report.records.append(record)
        if on_record is not None:
            on_record(record)

    def _run_step(self, conn: StoreConnection, step: MigrationStep) -> int:
        """Issue the statements of one step; return the number of rows copied."""
        if isinstance(step, RebuildTable):
            return self._rebuild(conn, step)

        if isinstance(step, CreateTable):
            conn.execute_statement(self._dialect.create_table(step.descriptor))
            for index in sorted(step.descriptor.indexes, key=lambda i: i.name):
                conn.execute_statement(self._dialect.create_index(step.table, index))
        elif isinstance(step, DropTable):
            conn.execute_statement(self._dialect.drop_table(step.table))
        elif isinstance(step, AddColumn):
            conn.execute_statement(self._dialect.add_column(step.table, step.column))
        elif isinstance(step, DropColumn):
            conn.execute_statement(self._dialect.drop_column(step.table, step.column_name))
        elif isinstance(step, AddIndex):
            conn.execute_statement(self._dialect.create_index(step.table, step.index))
        elif isinstance(step, DropIndex):
            conn.execute_statement(self._dialect.drop_index(step.index_name))
        else:
            raise ValidationError(f"Unsupported step kind {step.kind.value}", step_id=step.step_id)
        return 0

    def _rebuild(self, conn: StoreConnection, step: RebuildTable) -> int:
        dialect = self._dialect
        shadow = self._shadow_names(step.table)
        logger.debug("rebuild_started", step_id=step.step_id, table=step.table, shadow=shadow)

        conn.execute_statement(dialect.create_table(step.new, name=shadow))
        try:
            conn.execute_statement(dialect.copy_rows(step.table, shadow, step.projection))
        except StatementError:
            raise
        except ValidationError as exc:
            raise self._locate_violation(conn, step, shadow, exc) from exc

        expected = self._count(conn, step.table)
        copied = self._count(conn, shadow)
        if copied != expected:
            raise ValidationError(
                f"Rebuild of {step.table} copied {copied} of {expected} rows",
                step_id=step.step_id,
            )

        conn.execute_statement(dialect.drop_table(step.table))
        conn.execute_statement(dialect.rename_table(shadow, step.table))
        for index in sorted(step.new.indexes, key=lambda i: i.name):
            conn.execute_statement(dialect.create_index(step.table, index))

        violations = conn.execute_statement(dialect.foreign_key_check())
        if violations:
            first = violations[0]
            rows = conn.execute_statement(dialect.select_row(first["table"]), (first["rowid"],))
            raise ValidationError(
                f"Rebuild of {step.table} leaves {len(violations)} foreign-key violation(s); "
                f"first in {first['table']} row {first['rowid']} referencing {first['parent']}",
                step_id=step.step_id,
                row_id=first["rowid"],
                row=rows[0] if rows else None,
            )
        return copied

    def _locate_violation(
        self,
        conn: StoreConnection,
        step: RebuildTable,
        shadow: str,
        error: ValidationError,
    ) -> ValidationError:
        """Replay the copy row by row to find the first row that fails."""
        dialect = self._dialect
        single_row = dialect.copy_rows(step.table, shadow, step.projection, single_row=True)

        conn.execute_statement(dialect.savepoint(_ROW_CHECK_SAVEPOINT))
        try:
            for entry in conn.execute_statement(dialect.select_row_ids(step.table)):
                row_id = entry["row_id"]
                try:
                    conn.execute_statement(single_row, (row_id,))
                except ValidationError as exc:
                    values = conn.execute_statement(dialect.select_row(step.table), (row_id,))
                    return ValidationError(
                        f"Row {row_id} of {step.table} cannot be copied into the rebuilt "
                        f"table: {exc}",
                        step_id=step.step_id,
                        row_id=row_id,
                        row=values[0] if values else None,
                    )
        finally:
            conn.execute_statement(dialect.rollback_to_savepoint(_ROW_CHECK_SAVEPOINT))
            conn.execute_statement(dialect.release_savepoint(_ROW_CHECK_SAVEPOINT))

        return ValidationError(
            f"Copy into rebuilt {step.table} failed: {error}", step_id=step.step_id
        )

    def _count(self, conn: StoreConnection, table: str) -> int:
        rows = conn.execute_statement(self._dialect.count_rows(table))
        return int(next(iter(rows[0].values())))

    def _read_version(self, conn: StoreConnection) -> VersionId:
        rows = conn.execute_statement(self._dialect.read_version())
        return VersionId(int(next(iter(rows[0].values()))))
