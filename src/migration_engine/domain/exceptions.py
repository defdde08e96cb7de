"""Error taxonomy for the migration engine.

    MigrationEngineError
    ├── BusyError               write lock held elsewhere (retryable, Gate-internal)
    ├── LockTimeoutError        retry policy exhausted
    ├── ValidationError         step cannot be applied; original data untouched
    │   └── StatementError      the store rejected a statement (DDL conflict, bad SQL)
    ├── SchemaDriftError        ledger disagrees with declared migrations
    ├── CyclicDependencyError   rebuild order impossible; nothing planned
    └── MigrationCancelledError cancelled before a step started
"""

from __future__ import annotations

from typing import Any, Sequence


class MigrationEngineError(Exception):
    """Base class for all migration engine errors."""

    kind: str = "error"


class BusyError(MigrationEngineError):
    """Raised when another writer holds the store's write lock."""

    kind = "busy"


class LockTimeoutError(MigrationEngineError):
    """Raised when the retry policy is exhausted without getting the write lock."""

    kind = "lock_timeout"

    def __init__(self, message: str, *, attempts: int, waited: float) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.waited = waited


class ValidationError(MigrationEngineError):
    """Raised when a step or schema is invalid, or a row violates a constraint.

    Attributes:
        step_id: The step being applied, if any.
        row_id: Row identity of the violating row, if one was found.
        row: Column values of the violating row, if one was found.
    """

    kind = "validation"

    def __init__(
        self,
        message: str,
        *,
        step_id: str | None = None,
        row_id: int | None = None,
        row: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.row_id = row_id
        self.row = row


class StatementError(ValidationError):
    """Raised when the store rejects a statement outright.

    Unlike a constraint violation this does not depend on the rows, so no
    violating row is ever attached.
    """

    kind = "statement"


class SchemaDriftError(MigrationEngineError):
    """Raised when the ledger history no longer agrees with the declared steps.

    Requires operator intervention; the migration sequence is aborted.
    """

    kind = "schema_drift"

    def __init__(
        self,
        message: str,
        *,
        step_id: str | None = None,
        recorded_checksum: str | None = None,
        declared_checksum: str | None = None,
    ) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.recorded_checksum = recorded_checksum
        self.declared_checksum = declared_checksum


class CyclicDependencyError(MigrationEngineError):
    """Raised when tables that all need a rebuild reference each other in a cycle."""

    kind = "cyclic_dependency"

    def __init__(self, tables: Sequence[str]) -> None:
        self.tables = tuple(sorted(tables))
        super().__init__(
            f"Cyclic reference between tables requiring rebuild: {', '.join(self.tables)}"
        )


class MigrationCancelledError(MigrationEngineError):
    """Raised when cancellation is requested before the next step begins."""

    kind = "cancelled"

    def __init__(self, message: str, *, next_step_id: str | None = None) -> None:
        super().__init__(message)
        self.next_step_id = next_step_id
