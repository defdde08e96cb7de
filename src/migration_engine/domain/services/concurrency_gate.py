"""Concurrency gate: single writer, many snapshot readers.

Every mutation of the store (row writes, DDL, ledger updates, version
bumps) runs inside a write transaction handed out by this gate. At most one
write transaction is active at a time:

    - within the process, a non-blocking thread lock guards the single
      writer connection;
    - across processes, the store's own write lock is taken up front with an
      IMMEDIATE transaction, without any engine-level busy wait.

Either check failing raises BusyError at once. Waiting is the caller's
decision, expressed as a RetryPolicy: ``write_transaction`` retries with
exponential backoff and raises LockTimeoutError once the policy is
exhausted. The operation is never dropped or reordered; it either runs in
full or the caller gets an error.

Readers use ``read_snapshot``: a fresh connection in a deferred transaction,
which in WAL mode sees one consistent snapshot and neither blocks nor is
blocked by the writer.

Lock lifecycle:

    acquire_write() ──> [setup stmts] ──> BEGIN IMMEDIATE ──> caller work
                                                                  │
                              ┌───────────────────────────────────┤
                              v                                   v
                           COMMIT                             ROLLBACK
                              └──────────> [teardown stmts] <─────┘
                                                 │
                                           release lock
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Sequence

from migration_engine.domain.exceptions import BusyError, LockTimeoutError
from migration_engine.domain.services.retry import retry_on_busy
from migration_engine.domain.value_objects import DurabilityMode, RetryPolicy
from migration_engine.infrastructure.logging import get_logger
from migration_engine.infrastructure.metrics import MetricsRegistry, get_metrics
from migration_engine.ports.outbound.store_connection import (
    ConnectionFactory,
    StoreConnection,
)

logger = get_logger(__name__)


class ConcurrencyGate:
    """Serializes write transactions against one store.

    Usage:
        gate = ConcurrencyGate(SQLiteConnectionFactory(path))
        policy = RetryPolicy(max_attempts=5, base_delay=0.05,
                             multiplier=2.0, max_total_wait=2.0)
        with gate.write_transaction(policy) as conn:
            conn.execute_statement("INSERT INTO t VALUES (1)")

    Thread Safety:
        Any number of threads may share a gate. Writers are serialized by
        the gate; readers each get their own connection.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            connection_factory: Opens connections with store-wide settings.
            sleep: Wait used between lock attempts.
            clock: Monotonic clock used to measure lock waits.
            metrics: Metrics registry (the global one if omitted).
        """
        self._factory = connection_factory
        self._sleep = sleep
        self._clock = clock
        self._metrics = metrics or get_metrics()
        self._writer_lock = threading.Lock()
        self._writer: StoreConnection | None = None
        self._teardown: tuple[str, ...] = ()

    @property
    def durability(self) -> DurabilityMode:
        """Store-wide durability; fixed for the lifetime of the store."""
        return self._factory.durability

    def acquire_write(
        self,
        setup: Sequence[str] = (),
        teardown: Sequence[str] = (),
    ) -> StoreConnection:
        """Take the writer lock and open a write transaction, without waiting.

        Args:
            setup: Connection-level statements run before the transaction
                begins (settings that cannot change inside a transaction).
            teardown: Statements run after the transaction ends.

        Returns:
            The writer connection with an open IMMEDIATE transaction.

        Raises:
            BusyError: If another writer holds the lock.
        """
        if not self._writer_lock.acquire(blocking=False):
            raise BusyError("write lock held by another transaction in this process")
        try:
            conn = self._writer_connection()
            for statement in setup:
                conn.execute_statement(statement)
            self._teardown = tuple(teardown)
            try:
                conn.begin_transaction(immediate=True)
            except BaseException:
                self._run_teardown(conn)
                raise
        except BaseException:
            self._writer_lock.release()
            raise
        return conn

    def release_write(self, conn: StoreConnection, commit: bool) -> None:
        """End the write transaction and release the writer lock.

        A failed commit is rolled back before the error propagates. A
        failed rollback discards the writer connection.
        """
        try:
            if commit:
                try:
                    conn.commit()
                except BaseException:
                    self._safe_rollback(conn)
                    raise
            else:
                self._safe_rollback(conn)
            if self._writer is conn:
                self._run_teardown(conn)
            else:
                self._teardown = ()
        finally:
            self._writer_lock.release()

    @contextmanager
    def write_transaction(
        self,
        policy: RetryPolicy,
        *,
        setup: Sequence[str] = (),
        teardown: Sequence[str] = (),
    ) -> Iterator[StoreConnection]:
        """Run a block inside a write transaction, retrying on contention.

        Commits when the block exits normally, rolls back when it raises.

        Args:
            policy: How long to keep retrying while the lock is held.
            setup: See ``acquire_write``.
            teardown: See ``acquire_write``.

        Raises:
            LockTimeoutError: If the policy is exhausted.
        """
        started = self._clock()

        def on_busy(attempt: int, delay: float, error: BusyError) -> None:
            self._metrics.busy_retries_total.inc()
            logger.debug("write_lock_busy", attempt=attempt, retry_in=delay, error=str(error))

        result = retry_on_busy(
            lambda: self.acquire_write(setup, teardown),
            policy,
            sleep=self._sleep,
            on_busy=on_busy,
        )
        self._metrics.lock_wait_seconds.observe(self._clock() - started)

        if not result.succeeded or result.value is None:
            self._metrics.lock_timeouts_total.inc()
            logger.warning("write_lock_timeout", attempts=result.attempts, waited=result.waited)
            raise LockTimeoutError(
                f"Write lock not acquired after {result.attempts} attempts "
                f"({result.waited:.3f}s waited)",
                attempts=result.attempts,
                waited=result.waited,
            ) from result.last_error

        conn = result.value
        try:
            yield conn
        except BaseException:
            self.release_write(conn, commit=False)
            raise
        else:
            self.release_write(conn, commit=True)

    @contextmanager
    def read_snapshot(self) -> Iterator[StoreConnection]:
        """Yield a connection reading from one consistent snapshot."""
        conn = self._factory.open()
        try:
            conn.begin_transaction(immediate=False)
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        """Close the writer connection, if one is open."""
        with self._writer_lock:
            if self._writer is not None:
                self._writer.close()
                self._writer = None

    def _writer_connection(self) -> StoreConnection:
        if self._writer is None:
            self._writer = self._factory.open()
        return self._writer

    def _run_teardown(self, conn: StoreConnection) -> None:
        teardown, self._teardown = self._teardown, ()
        for statement in teardown:
            conn.execute_statement(statement)

    def _safe_rollback(self, conn: StoreConnection) -> None:
        try:
            conn.rollback()
        except Exception:
            logger.error("rollback_failed", exc_info=True)
            self._discard_writer()

    def _discard_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            writer.close()
        except Exception:
            logger.error("writer_close_failed", exc_info=True)
