"""Migration ledger: the durable record of which steps ran.

The ledger lives in the store it describes, in the reserved table
``_migration_ledger``. Every method takes the connection to work on, so the
caller decides which transaction a ledger write belongs to; the executor
uses that to commit an APPLIED record atomically with the step's own
changes.

Records are inserted and their status finalized; the migration flow never
deletes one. The only removal is ``reset_failed``, an administrative action
that copies the record into ``_migration_ledger_audit`` first.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from migration_engine.domain.entities import MigrationRecord, MigrationStep, utc_now
from migration_engine.domain.exceptions import SchemaDriftError, ValidationError
from migration_engine.domain.value_objects import (
    LEDGER_AUDIT_TABLE,
    LEDGER_TABLE,
    LedgerDecision,
    StepId,
    StepStatus,
)
from migration_engine.infrastructure.logging import get_logger
from migration_engine.ports.outbound.store_connection import Row, StoreConnection

logger = get_logger(__name__)

_CREATE_LEDGER = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    step_id TEXT PRIMARY KEY,
    checksum TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    status TEXT NOT NULL
)
"""

_CREATE_AUDIT = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_AUDIT_TABLE} (
    audit_id INTEGER PRIMARY KEY,
    step_id TEXT NOT NULL,
    checksum TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    status TEXT NOT NULL,
    operator TEXT NOT NULL,
    reason TEXT NOT NULL,
    reset_at TEXT NOT NULL
)
"""


class MigrationLedger:
    """Reads and writes ledger records on a caller-supplied connection.

    Usage:
        ledger = MigrationLedger()
        with gate.write_transaction(policy) as conn:
            ledger.ensure_table(conn)
            decision = ledger.check(conn, step)
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize the ledger.

        Args:
            clock: Source of UTC timestamps for ``applied_at``.
        """
        self._clock = clock

    def ensure_table(self, conn: StoreConnection) -> None:
        """Create the ledger and audit tables if they do not exist."""
        conn.execute_statement(_CREATE_LEDGER)
        conn.execute_statement(_CREATE_AUDIT)

    def exists(self, conn: StoreConnection) -> bool:
        rows = conn.execute_statement(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (LEDGER_TABLE,),
        )
        return bool(rows)

    def get(self, conn: StoreConnection, step_id: StepId) -> MigrationRecord | None:
        rows = conn.execute_statement(
            f"SELECT step_id, checksum, applied_at, status FROM {LEDGER_TABLE} WHERE step_id = ?",
            (step_id,),
        )
        return _to_record(rows[0]) if rows else None

    def records(self, conn: StoreConnection) -> list[MigrationRecord]:
        """Return every record, ordered by step identifier."""
        rows = conn.execute_statement(
            f"SELECT step_id, checksum, applied_at, status FROM {LEDGER_TABLE} ORDER BY step_id"
        )
        return [_to_record(row) for row in rows]

    def check(self, conn: StoreConnection, step: MigrationStep) -> LedgerDecision:
        """Decide what to do with ``step`` given its ledger record.

        Raises:
            SchemaDriftError: If a record exists under the step's identifier
                with a different checksum, whatever its status.
        """
        record = self.get(conn, step.step_id)
        if record is None:
            return LedgerDecision.PROCEED

        if record.checksum != step.checksum:
            raise SchemaDriftError(
                f"Step {step.step_id} was recorded as {record.status.value} with checksum "
                f"{record.checksum[:12]}, but the declared step has checksum {step.checksum[:12]}",
                step_id=step.step_id,
                recorded_checksum=record.checksum,
                declared_checksum=step.checksum,
            )
        if record.status is StepStatus.APPLIED:
            return LedgerDecision.SKIP
        return LedgerDecision.RETRY

    def begin(
        self,
        conn: StoreConnection,
        step: MigrationStep,
        decision: LedgerDecision = LedgerDecision.PROCEED,
    ) -> MigrationRecord:
        """Record ``step`` as APPLYING.

        A RETRY re-opens the existing record of an interrupted or failed
        attempt instead of inserting a new one.
        """
        record = MigrationRecord(
            step_id=step.step_id,
            checksum=step.checksum,
            applied_at=self._clock(),
            status=StepStatus.APPLYING,
        )
        if decision is LedgerDecision.RETRY:
            conn.execute_statement(
                f"UPDATE {LEDGER_TABLE} SET status = ?, applied_at = ? "
                "WHERE step_id = ? AND checksum = ?",
                (record.status.value, record.applied_at.isoformat(), record.step_id, record.checksum),
            )
        else:
            conn.execute_statement(
                f"INSERT INTO {LEDGER_TABLE} (step_id, checksum, applied_at, status) "
                "VALUES (?, ?, ?, ?)",
                (record.step_id, record.checksum, record.applied_at.isoformat(), record.status.value),
            )
        return record

    def mark_applied(self, conn: StoreConnection, record: MigrationRecord) -> MigrationRecord:
        applied = record.transition(StepStatus.APPLIED, applied_at=self._clock())
        self._write_status(conn, applied)
        return applied

    def mark_failed(
        self,
        conn: StoreConnection,
        record: MigrationRecord,
        error: BaseException,
        detail: dict[str, Any] | None = None,
    ) -> MigrationRecord:
        failed = record.transition(
            StepStatus.FAILED,
            applied_at=self._clock(),
            error_kind=getattr(error, "kind", type(error).__name__),
            detail={"message": str(error), **(detail or {})},
        )
        self._write_status(conn, failed)
        return failed

    def reset_failed(
        self,
        conn: StoreConnection,
        step_id: StepId,
        *,
        operator: str,
        reason: str,
    ) -> MigrationRecord:
        """Remove a FAILED record so that a changed step can be applied.

        The record is copied into the audit table, with who removed it and
        why, on the same connection and therefore in the same transaction.

        Raises:
            ValidationError: If there is no record, it is not FAILED, or
                ``operator`` or ``reason`` is blank.
        """
        if not operator.strip() or not reason.strip():
            raise ValidationError("Resetting a ledger record requires an operator and a reason")
        record = self.get(conn, step_id)
        if record is None:
            raise ValidationError(f"No ledger record for step {step_id}", step_id=step_id)
        if record.status is not StepStatus.FAILED:
            raise ValidationError(
                f"Only FAILED records can be reset; step {step_id} is {record.status.value}",
                step_id=step_id,
            )

        conn.execute_statement(
            f"INSERT INTO {LEDGER_AUDIT_TABLE} "
            "(step_id, checksum, applied_at, status, operator, reason, reset_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                record.step_id,
                record.checksum,
                record.applied_at.isoformat(),
                record.status.value,
                operator,
                reason,
                self._clock().isoformat(),
            ),
        )
        conn.execute_statement(f"DELETE FROM {LEDGER_TABLE} WHERE step_id = ?", (step_id,))
        logger.warning(
            "ledger_record_reset",
            step_id=step_id,
            checksum=record.checksum,
            operator=operator,
            reason=reason,
        )
        return record

    def audit_entries(self, conn: StoreConnection) -> list[Row]:
        return conn.execute_statement(
            f"SELECT step_id, checksum, applied_at, status, operator, reason, reset_at "
            f"FROM {LEDGER_AUDIT_TABLE} ORDER BY audit_id"
        )

    def _write_status(self, conn: StoreConnection, record: MigrationRecord) -> None:
        conn.execute_statement(
            f"UPDATE {LEDGER_TABLE} SET status = ?, applied_at = ? WHERE step_id = ?",
            (record.status.value, record.applied_at.isoformat(), record.step_id),
        )


def _to_record(row: Row) -> MigrationRecord:
    return MigrationRecord(
        step_id=StepId(row["step_id"]),
        checksum=row["checksum"],
        applied_at=datetime.fromisoformat(row["applied_at"]),
        status=StepStatus(row["status"]),
    )
