"""Migration-related types and enumerations.

These types define the lifecycle of a migration step, the kinds of steps
and constraints the planner produces, and the store-wide durability modes.
"""

from __future__ import annotations

from enum import Enum, auto


class StepStatus(Enum):
    """Migration step lifecycle states.

    State machine:

        PENDING ──begin()──> APPLYING
                                │
                  ┌─────────────┴─────────────┐
                  │                           │
            commit + ledger              rollback
                  │                           │
                  v                           v
               APPLIED                     FAILED

    PENDING is never persisted: a step only gets a ledger record once it
    starts. An APPLYING record found at startup means the process died while
    the step's transaction was open; the engine rolled that transaction back,
    so the step is re-run from scratch.
    """

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (APPLIED or FAILED)."""
        return self in (StepStatus.APPLIED, StepStatus.FAILED)

    def can_transition_to(self, other: StepStatus) -> bool:
        """Check if the state machine allows moving to ``other``."""
        allowed = {
            StepStatus.PENDING: {StepStatus.APPLYING},
            StepStatus.APPLYING: {StepStatus.APPLIED, StepStatus.FAILED},
            StepStatus.APPLIED: set(),
            StepStatus.FAILED: set(),
        }
        return other in allowed[self]


class StepKind(Enum):
    """Kind tag of a migration step."""

    CREATE_TABLE = "create_table"
    DROP_TABLE = "drop_table"
    ADD_COLUMN = "add_column"
    DROP_COLUMN = "drop_column"
    RENAME_COLUMN = "rename_column"
    CHANGE_COLUMN_TYPE = "change_column_type"
    ADD_INDEX = "add_index"
    DROP_INDEX = "drop_index"
    REBUILD_TABLE = "rebuild_table"

    def is_in_place(self) -> bool:
        """Check if the step runs as a single statement without a rebuild."""
        return self in (
            StepKind.CREATE_TABLE,
            StepKind.DROP_TABLE,
            StepKind.ADD_COLUMN,
            StepKind.DROP_COLUMN,
            StepKind.ADD_INDEX,
            StepKind.DROP_INDEX,
        )


class ConstraintKind(Enum):
    """Kind of a table-level constraint."""

    PRIMARY_KEY = "primary_key"
    UNIQUE = "unique"
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"


class DurabilityMode(Enum):
    """Store-wide commit durability.

    FULL flushes every commit to stable storage before returning. NORMAL
    defers the flush for throughput; on abrupt power loss the most recent
    commits may be lost, but the store is never corrupted.
    """

    FULL = "full"
    NORMAL = "normal"


class LedgerDecision(Enum):
    """What the executor should do with a step after consulting the ledger."""

    PROCEED = auto()
    """No record exists; start the step."""

    SKIP = auto()
    """Already applied with the same checksum; nothing to do."""

    RETRY = auto()
    """A previous attempt died or failed; re-run the whole step."""
