"""Value objects for the migration engine.

Value objects are immutable and compared by value. They carry no identity
of their own.
"""

from migration_engine.domain.value_objects.identifiers import (
    INITIAL_VERSION,
    LEDGER_AUDIT_TABLE,
    LEDGER_TABLE,
    SHADOW_PREFIX,
    StepId,
    StepKey,
    VersionId,
)
from migration_engine.domain.value_objects.logical_type import (
    ConversionRule,
    LogicalType,
    conversion_rule,
)
from migration_engine.domain.value_objects.migration_types import (
    ConstraintKind,
    DurabilityMode,
    LedgerDecision,
    StepKind,
    StepStatus,
)
from migration_engine.domain.value_objects.retry_policy import RetryPolicy

__all__ = [
    # Identifiers
    "INITIAL_VERSION",
    "LEDGER_AUDIT_TABLE",
    "LEDGER_TABLE",
    "SHADOW_PREFIX",
    "StepId",
    "StepKey",
    "VersionId",
    # Types
    "ConversionRule",
    "LogicalType",
    "conversion_rule",
    "ConstraintKind",
    "DurabilityMode",
    "LedgerDecision",
    "StepKind",
    "StepStatus",
    # Retry
    "RetryPolicy",
]
