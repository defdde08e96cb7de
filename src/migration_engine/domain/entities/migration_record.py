"""Ledger records and migration reports."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from migration_engine.domain.value_objects import StepId, StepStatus, VersionId


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """Outcome of one migration step as stored in (and read from) the ledger.

    Only ``step_id``, ``checksum``, ``applied_at`` and ``status`` are
    persisted. ``error_kind``, ``detail`` and ``skipped`` exist for reporting
    to whoever consumes the outcome stream.

    Attributes:
        step_id: Identifier of the step.
        checksum: Content checksum of the step when it was recorded.
        applied_at: When the record was created or last finalized (UTC).
        status: Lifecycle status.
        error_kind: Error kind of a FAILED step.
        detail: Free-form diagnostics (e.g. the violating row).
        skipped: True when the step was already applied and nothing ran.
    """

    step_id: StepId
    checksum: str
    applied_at: datetime
    status: StepStatus
    error_kind: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    skipped: bool = False

    def __post_init__(self) -> None:
        if self.status is StepStatus.PENDING:
            raise ValueError("PENDING steps have no ledger record")

    def transition(self, status: StepStatus, **changes: Any) -> MigrationRecord:
        """Return a copy moved to ``status``.

        Raises:
            ValueError: If the state machine forbids the transition.
        """
        if not self.status.can_transition_to(status):
            raise ValueError(
                f"Cannot move step {self.step_id} from {self.status.value} to {status.value}"
            )
        changes.setdefault("applied_at", utc_now())
        return replace(self, status=status, **changes)


@dataclass
class MigrationReport:
    """Summary of one executor run."""

    source_version: VersionId
    target_version: VersionId
    records: list[MigrationRecord] = field(default_factory=list)

    @property
    def applied(self) -> list[MigrationRecord]:
        return [r for r in self.records if r.status is StepStatus.APPLIED and not r.skipped]

    @property
    def skipped(self) -> list[MigrationRecord]:
        return [r for r in self.records if r.skipped]

    @property
    def failed(self) -> list[MigrationRecord]:
        return [r for r in self.records if r.status is StepStatus.FAILED]
