"""Store connection port.

This outbound port defines the only capability the migration core needs
from the embedded store: explicit transactions and statement execution,
with write-lock conflicts reported as ``BusyError``.

References:
    - SQLite "BEGIN IMMEDIATE" and busy handling semantics
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, Sequence

from migration_engine.domain.value_objects import DurabilityMode

Row = dict[str, Any]


class StoreConnection(Protocol):
    """Protocol for one connection to the store.

    Thread Safety:
        A connection is used by one thread at a time. The concurrency gate
        owns the writer connection; each reader opens its own.
    """

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """Return True while a transaction is open on this connection."""
        ...

    @abstractmethod
    def begin_transaction(self, immediate: bool = True) -> None:
        """Open a transaction.

        Args:
            immediate: Take the store's write lock now. A deferred
                transaction reads from a snapshot and takes no write lock.

        Raises:
            BusyError: If ``immediate`` and another writer holds the lock.
        """
        ...

    @abstractmethod
    def execute_statement(
        self, statement: str, parameters: Sequence[Any] = ()
    ) -> list[Row]:
        """Execute one statement and return its result rows.

        Raises:
            BusyError: If the statement hit a write-lock conflict.
            ValidationError: If the statement violated a constraint.
        """
        ...

    @abstractmethod
    def commit(self) -> None:
        """Commit the open transaction, honoring the store's durability mode."""
        ...

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the open transaction. No-op if none is open."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the connection. Rolls back any open transaction."""
        ...


class ConnectionFactory(Protocol):
    """Opens connections to one store with its store-wide settings applied."""

    @property
    @abstractmethod
    def durability(self) -> DurabilityMode:
        """Return the store-wide durability mode."""
        ...

    @abstractmethod
    def open(self) -> StoreConnection:
        """Open a new connection."""
        ...
