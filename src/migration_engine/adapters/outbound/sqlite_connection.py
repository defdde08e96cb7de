"""SQLite implementation of the store connection port.

Connections run in autocommit mode (``isolation_level=None``) so that every
transaction boundary is an explicit statement issued by the caller. The
store is switched to WAL journal mode when opened: readers then work from a
snapshot and never block on, nor block, the single writer.

Busy detection matches both the extended result code (when the interpreter
exposes it) and the well-known error messages, because the sqlite3 module
reports every lock conflict as a plain ``OperationalError``. Any other
``OperationalError`` means the store rejected the statement itself and
surfaces as ``StatementError``; constraint violations surface as
``ValidationError``.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Final, Sequence

from migration_engine.domain.exceptions import BusyError, StatementError, ValidationError
from migration_engine.domain.value_objects import DurabilityMode
from migration_engine.infrastructure.logging import get_logger
from migration_engine.ports.outbound.store_connection import Row

logger = get_logger(__name__)

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_BUSY_TIMEOUT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_SYNCHRONOUS: Final[dict[DurabilityMode, str]] = {
    DurabilityMode.FULL: "FULL",
    DurabilityMode.NORMAL: "NORMAL",
}


def is_busy_error(exc: BaseException) -> bool:
    """Return True if ``exc`` is SQLite reporting a lock conflict."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


class SQLiteStoreConnection:
    """A single SQLite connection with explicit transaction control.

    Usage:
        factory = SQLiteConnectionFactory(path)
        conn = factory.open()
        conn.begin_transaction(immediate=True)
        conn.execute_statement("INSERT INTO t VALUES (?)", (1,))
        conn.commit()
    """

    def __init__(self, raw: sqlite3.Connection) -> None:
        """Wrap an already configured sqlite3 connection.

        Args:
            raw: Connection opened in autocommit mode.
        """
        self._raw = raw

    @property
    def raw(self) -> sqlite3.Connection:
        return self._raw

    @property
    def in_transaction(self) -> bool:
        return self._raw.in_transaction

    def begin_transaction(self, immediate: bool = True) -> None:
        """Open a transaction; IMMEDIATE takes the write lock up front.

        A deferred transaction only pins its snapshot at the first read, so
        one read is issued right away.
        """
        if immediate:
            self._run("BEGIN IMMEDIATE")
            return
        self._run("BEGIN DEFERRED")
        self._run("SELECT count(*) FROM sqlite_master").close()

    def execute_statement(
        self, statement: str, parameters: Sequence[Any] = ()
    ) -> list[Row]:
        cursor = self._run(statement, parameters)
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def commit(self) -> None:
        self._run("COMMIT")

    def rollback(self) -> None:
        if self._raw.in_transaction:
            self._run("ROLLBACK")

    def close(self) -> None:
        try:
            self.rollback()
        finally:
            self._raw.close()

    def _run(self, statement: str, parameters: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._raw.execute(statement, tuple(parameters))
        except sqlite3.IntegrityError as exc:
            raise ValidationError(str(exc)) from exc
        except sqlite3.OperationalError as exc:
            if is_busy_error(exc):
                raise BusyError(str(exc)) from exc
            raise StatementError(f"{exc} in: {statement.strip()}") from exc


class SQLiteConnectionFactory:
    """Opens configured connections to one SQLite store file.

    Every connection gets the same store-wide settings: WAL journal mode,
    the durability mode mapped onto ``PRAGMA synchronous``, foreign-key
    enforcement, and the busy timeout. The busy timeout defaults to zero so
    that a write-lock conflict surfaces immediately as ``BusyError`` and
    waiting is left to the concurrency gate's retry policy.
    """

    def __init__(
        self,
        path: str | Path,
        durability: DurabilityMode = DurabilityMode.FULL,
        busy_timeout_ms: int = 0,
    ) -> None:
        """Initialize the factory.

        Args:
            path: Store file path. Parent directories are created on open.
            durability: Store-wide commit durability.
            busy_timeout_ms: Engine-level wait on lock conflicts.

        Raises:
            ValueError: If ``busy_timeout_ms`` is negative.
        """
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        self._path = Path(path).expanduser()
        self._durability = durability
        self._busy_timeout_ms = busy_timeout_ms

    @property
    def path(self) -> Path:
        return self._path

    @property
    def durability(self) -> DurabilityMode:
        return self._durability

    def open(self) -> SQLiteStoreConnection:
        """Open a new connection with the store-wide settings applied."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        raw = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        raw.row_factory = sqlite3.Row
        try:
            mode = raw.execute("PRAGMA journal_mode=WAL").fetchone()[0]
            if str(mode).lower() != "wal":
                logger.warning("wal_unavailable", path=str(self._path), journal_mode=mode)
            raw.execute(f"PRAGMA synchronous={_SYNCHRONOUS[self._durability]}")
            raw.execute("PRAGMA foreign_keys=ON")
            raw.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        except sqlite3.Error as exc:
            raw.close()
            if is_busy_error(exc):
                raise BusyError(str(exc)) from exc
            raise
        return SQLiteStoreConnection(raw)
