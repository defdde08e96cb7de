"""SQL dialect port.

Renders the statements the executor issues. Keeping the text in one place
lets the executor stay engine-neutral: it only sequences statements and
never builds SQL itself.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from migration_engine.domain.entities import (
    ColumnDescriptor,
    ColumnProjection,
    IndexDescriptor,
    TableDescriptor,
)


class SqlDialect(Protocol):
    """Protocol for rendering engine-specific SQL."""

    @abstractmethod
    def quote(self, identifier: str) -> str:
        """Quote an identifier."""
        ...

    @abstractmethod
    def create_table(self, table: TableDescriptor, name: str | None = None) -> str:
        """CREATE TABLE for ``table``, optionally under a different name."""
        ...

    @abstractmethod
    def drop_table(self, name: str) -> str:
        ...

    @abstractmethod
    def rename_table(self, old_name: str, new_name: str) -> str:
        ...

    @abstractmethod
    def add_column(self, table: str, column: ColumnDescriptor) -> str:
        ...

    @abstractmethod
    def drop_column(self, table: str, column_name: str) -> str:
        ...

    @abstractmethod
    def create_index(self, table: str, index: IndexDescriptor) -> str:
        ...

    @abstractmethod
    def drop_index(self, name: str) -> str:
        ...

    @abstractmethod
    def copy_rows(
        self,
        source: str,
        target: str,
        projection: ColumnProjection,
        single_row: bool = False,
    ) -> str:
        """INSERT ... SELECT copying rows through ``projection``.

        With ``single_row`` the statement takes one parameter, the row
        identity of the source row to copy.
        """
        ...

    @abstractmethod
    def count_rows(self, table: str) -> str:
        """Query returning one row whose first value is the row count of ``table``."""
        ...

    @abstractmethod
    def select_row_ids(self, table: str) -> str:
        """Row identities of ``table`` in copy order."""
        ...

    @abstractmethod
    def select_row(self, table: str) -> str:
        """One row of ``table`` by row identity (one parameter)."""
        ...

    @abstractmethod
    def savepoint(self, name: str) -> str:
        ...

    @abstractmethod
    def release_savepoint(self, name: str) -> str:
        ...

    @abstractmethod
    def rollback_to_savepoint(self, name: str) -> str:
        ...

    @abstractmethod
    def set_foreign_keys(self, enabled: bool) -> str:
        """Toggle foreign-key enforcement. Only valid outside a transaction."""
        ...

    @abstractmethod
    def foreign_keys_enabled(self) -> str:
        """Query returning one row whose first value is 1 when enforcement is on."""
        ...

    @abstractmethod
    def foreign_key_check(self, table: str | None = None) -> str:
        """Query returning one row per foreign-key violation.

        Checks ``table`` only, or the whole store when ``table`` is None.
        """
        ...

    @abstractmethod
    def read_version(self) -> str:
        """Query returning one row whose first value is the schema version."""
        ...

    @abstractmethod
    def write_version(self, version: int) -> str:
        ...
