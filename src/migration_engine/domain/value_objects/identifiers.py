"""Identifiers used across the migration engine.

Step identifiers are plain strings with a fixed, zero-padded layout so that
lexical order matches (schema version, position in plan) order. The ledger
relies on that to stay ordered by step identifier.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NewType


StepId = NewType("StepId", str)
"""Identifier of a migration step, unique across the ledger."""

VersionId = NewType("VersionId", int)
"""Schema version number. Strictly increasing across successive versions."""

INITIAL_VERSION = VersionId(0)
"""Version of a store no migration has ever touched."""

LEDGER_TABLE = "_migration_ledger"
LEDGER_AUDIT_TABLE = "_migration_ledger_audit"
SHADOW_PREFIX = "_rebuild_"


@dataclass(frozen=True, slots=True)
class StepKey:
    """Structured form of a step identifier.

    Attributes:
        version: Target schema version of the plan the step belongs to.
        position: Zero-based position of the step within its plan.
        kind: Step kind tag (e.g. ``rebuild_table``).
        table: Table the step operates on.

    Example:
        >>> StepKey(VersionId(2), 0, "rebuild_table", "users").step_id
        '000002.0000.rebuild_table.users'
    """

    version: VersionId
    position: int
    kind: str
    table: str

    def __post_init__(self) -> None:
        """Validate the key components."""
        if self.version < 0:
            raise ValueError(f"version must be non-negative, got {self.version}")
        if not 0 <= self.position <= 9999:
            raise ValueError(f"position must be in [0, 9999], got {self.position}")

    @property
    def step_id(self) -> StepId:
        return StepId(f"{self.version:06d}.{self.position:04d}.{self.kind}.{self.table}")

    @classmethod
    def parse(cls, step_id: str) -> StepKey:
        """Parse a step identifier back into its components.

        Raises:
            ValueError: If the identifier does not follow the layout.
        """
        parts = step_id.split(".", 3)
        if len(parts) != 4:
            raise ValueError(f"Malformed step id: {step_id!r}")
        version, position, kind, table = parts
        return cls(VersionId(int(version)), int(position), kind, table)
