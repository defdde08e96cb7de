"""Integration tests for MigrationExecutor against a real SQLite store."""

from __future__ import annotations

import threading

import pytest

from migration_engine.adapters.outbound import SQLiteDialect, SQLiteSchemaInspector
from migration_engine.application import CancellationToken, MigrationExecutor
from migration_engine.domain.entities import (
    ChangeColumnType,
    ColumnDescriptor,
    ConstraintDescriptor,
    DropIndex,
    IndexDescriptor,
    MigrationPlan,
    MigrationRecord,
    RebuildTable,
    SchemaVersion,
    TableDescriptor,
)
from migration_engine.domain.exceptions import (
    LockTimeoutError,
    MigrationCancelledError,
    SchemaDriftError,
    StatementError,
    ValidationError,
)
from migration_engine.domain.services import ConcurrencyGate, MigrationLedger, MigrationPlanner
from migration_engine.domain.value_objects import (
    LogicalType,
    RetryPolicy,
    StepId,
    StepStatus,
    VersionId,
)
from migration_engine.infrastructure.metrics import MetricsRegistry

INT = LogicalType.INTEGER
TEXT = LogicalType.TEXT


def seed(gate: ConcurrencyGate, policy: RetryPolicy, schema: SchemaVersion, rows: dict) -> None:
    """Create ``schema`` directly and stamp the store with its version."""
    dialect = SQLiteDialect()
    with gate.write_transaction(policy) as conn:
        for table in schema:
            conn.execute_statement(dialect.create_table(table))
            for index in table.indexes:
                conn.execute_statement(dialect.create_index(table.name, index))
        for name, values in rows.items():
            for row in values:
                columns = ", ".join(row)
                marks = ", ".join("?" for _ in row)
                conn.execute_statement(
                    f"INSERT INTO {name} ({columns}) VALUES ({marks})", tuple(row.values())
                )
        conn.execute_statement(dialect.write_version(schema.version))


def select(gate: ConcurrencyGate, sql: str) -> list[dict]:
    with gate.read_snapshot() as conn:
        return conn.execute_statement(sql)


@pytest.fixture
def executor(
    gate: ConcurrencyGate,
    dialect: SQLiteDialect,
    policy: RetryPolicy,
    metrics_registry: MetricsRegistry,
) -> MigrationExecutor:
    return MigrationExecutor(gate, MigrationLedger(), dialect, policy, metrics=metrics_registry)


@pytest.fixture
def seeded(
    gate: ConcurrencyGate, policy: RetryPolicy, users_v1: SchemaVersion
) -> ConcurrencyGate:
    seed(
        gate,
        policy,
        users_v1,
        {"users": [{"id": i, "name": f"user{i}"} for i in range(1, 6)]},
    )
    return gate


@pytest.mark.integration
class TestRebuild:
    """Tests for the rebuild protocol."""

    def test_drop_and_add_not_null_column(
        self,
        seeded: ConcurrencyGate,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
        metrics_registry: MetricsRegistry,
    ) -> None:
        plan = MigrationPlanner().plan(users_v1, users_v2)
        seen: list[MigrationRecord] = []

        report = executor.apply(plan, on_record=seen.append)

        assert [type(s) for s in plan] == [RebuildTable]
        assert select(seeded, "SELECT id, email FROM users ORDER BY id") == [
            {"id": i, "email": ""} for i in range(1, 6)
        ]
        history = executor.history()
        assert len(history) == 1
        assert history[0].status is StepStatus.APPLIED
        assert history[0].step_id == plan.steps[0].step_id
        assert executor.current_version() == 2
        assert [r.status for r in report.applied] == [StepStatus.APPLIED]
        assert seen == report.records
        assert metrics_registry.rebuild_rows_copied_total._value.get() == 5

    def test_index_moved_to_another_table(
        self, gate: ConcurrencyGate, policy: RetryPolicy, executor: MigrationExecutor
    ) -> None:
        idx_ref = IndexDescriptor("idx_ref", ("ref",))
        old = SchemaVersion(
            VersionId(1),
            frozenset(
                {
                    TableDescriptor(
                        "orders",
                        (ColumnDescriptor("id", INT), ColumnDescriptor("ref", TEXT)),
                        indexes=frozenset({idx_ref}),
                    ),
                    TableDescriptor("accounts", (ColumnDescriptor("id", INT),)),
                }
            ),
        )
        new = SchemaVersion(
            VersionId(2),
            frozenset(
                {
                    TableDescriptor("orders", (ColumnDescriptor("id", INT),)),
                    TableDescriptor(
                        "accounts",
                        (ColumnDescriptor("id", INT), ColumnDescriptor("ref", TEXT)),
                        indexes=frozenset({idx_ref}),
                    ),
                }
            ),
        )
        seed(gate, policy, old, {"orders": [{"id": 1, "ref": "r1"}], "accounts": [{"id": 7}]})

        report = executor.apply(MigrationPlanner().plan(old, new))

        assert all(r.status is StepStatus.APPLIED for r in report.records)
        with gate.read_snapshot() as conn:
            assert SQLiteSchemaInspector().inspect(conn) == {t.name: t for t in new}
        assert select(gate, "SELECT id FROM orders") == [{"id": 1}]

    def test_effective_schema_matches_target(
        self,
        seeded: ConcurrencyGate,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        executor.apply(MigrationPlanner().plan(users_v1, users_v2))

        with seeded.read_snapshot() as conn:
            described = SQLiteSchemaInspector().inspect(conn)

        assert described == {"users": users_v2.table("users")}
        assert not [
            row
            for row in select(seeded, "SELECT name FROM sqlite_master")
            if row["name"].startswith("_rebuild_")
        ]

    def test_rename_and_type_change_preserve_rows(
        self, gate: ConcurrencyGate, policy: RetryPolicy, executor: MigrationExecutor
    ) -> None:
        old = SchemaVersion(
            VersionId(1),
            frozenset(
                {TableDescriptor("t", (ColumnDescriptor("id", INT), ColumnDescriptor("qty", TEXT)))}
            ),
        )
        new = SchemaVersion(
            VersionId(2),
            frozenset(
                {
                    TableDescriptor(
                        "t",
                        (
                            ColumnDescriptor("id", INT),
                            ColumnDescriptor("quantity", INT, renamed_from="qty"),
                        ),
                    )
                }
            ),
        )
        seed(gate, policy, old, {"t": [{"id": 1, "qty": "3"}, {"id": 2, "qty": None}]})

        executor.apply(MigrationPlanner().plan(old, new))

        assert select(gate, "SELECT id, quantity FROM t ORDER BY id") == [
            {"id": 1, "quantity": 3},
            {"id": 2, "quantity": None},
        ]

    def test_rebuild_of_referenced_parent_keeps_children_valid(
        self, gate: ConcurrencyGate, policy: RetryPolicy, executor: MigrationExecutor
    ) -> None:
        parent_v1 = TableDescriptor(
            "parent",
            (ColumnDescriptor("id", INT, nullable=False), ColumnDescriptor("junk", TEXT)),
            constraints=frozenset({ConstraintDescriptor.primary_key("id")}),
        )
        parent_v2 = TableDescriptor(
            "parent",
            (ColumnDescriptor("id", INT, nullable=False),),
            constraints=frozenset({ConstraintDescriptor.primary_key("id")}),
        )
        child = TableDescriptor(
            "child",
            (ColumnDescriptor("id", INT, nullable=False), ColumnDescriptor("parent_id", INT)),
            constraints=frozenset(
                {
                    ConstraintDescriptor.primary_key("id"),
                    ConstraintDescriptor.foreign_key(["parent_id"], "parent", ["id"]),
                }
            ),
        )
        old = SchemaVersion(VersionId(1), frozenset({parent_v1, child}))
        new = SchemaVersion(VersionId(2), frozenset({parent_v2, child}))
        seed(
            gate,
            policy,
            old,
            {"parent": [{"id": 1, "junk": "x"}], "child": [{"id": 10, "parent_id": 1}]},
        )

        executor.apply(MigrationPlanner().plan(old, new))

        assert select(gate, "SELECT parent_id FROM child") == [{"parent_id": 1}]
        assert select(gate, "PRAGMA foreign_key_check") == []
        with gate.write_transaction(policy) as conn:
            assert conn.execute_statement("PRAGMA foreign_keys") == [{"foreign_keys": 1}]


@pytest.mark.integration
class TestFailures:
    """Tests for failed steps."""

    @pytest.fixture
    def unique_email_plan(self, gate: ConcurrencyGate, policy: RetryPolicy) -> MigrationPlan:
        old = SchemaVersion(
            VersionId(1),
            frozenset(
                {TableDescriptor("users", (ColumnDescriptor("id", INT), ColumnDescriptor("email", TEXT)))}
            ),
        )
        new = SchemaVersion(
            VersionId(2),
            frozenset(
                {
                    TableDescriptor(
                        "users",
                        (ColumnDescriptor("id", INT), ColumnDescriptor("email", TEXT)),
                        constraints=frozenset({ConstraintDescriptor.unique("email")}),
                    )
                }
            ),
        )
        seed(
            gate,
            policy,
            old,
            {
                "users": [
                    {"id": 1, "email": "a@x"},
                    {"id": 2, "email": "b@x"},
                    {"id": 3, "email": "a@x"},
                ]
            },
        )
        return MigrationPlanner().plan(old, new)

    def test_violating_row_reported_and_original_untouched(
        self,
        gate: ConcurrencyGate,
        executor: MigrationExecutor,
        unique_email_plan: MigrationPlan,
    ) -> None:
        seen: list[MigrationRecord] = []

        with pytest.raises(ValidationError) as exc_info:
            executor.apply(unique_email_plan, on_record=seen.append)

        assert exc_info.value.row_id == 3
        assert exc_info.value.row == {"id": 3, "email": "a@x"}
        assert exc_info.value.step_id == unique_email_plan.steps[0].step_id
        assert select(gate, "SELECT id, email FROM users ORDER BY id") == [
            {"id": 1, "email": "a@x"},
            {"id": 2, "email": "b@x"},
            {"id": 3, "email": "a@x"},
        ]
        assert [r.status for r in executor.history()] == [StepStatus.FAILED]
        assert seen[0].status is StepStatus.FAILED
        assert seen[0].error_kind == "validation"
        assert seen[0].detail["row_id"] == 3
        assert executor.current_version() == 1
        tables = [r["name"] for r in select(gate, "SELECT name FROM sqlite_master WHERE type = 'table'")]
        assert not [name for name in tables if name.startswith("_rebuild_")]

    def test_failed_step_retried_after_data_fix(
        self,
        gate: ConcurrencyGate,
        policy: RetryPolicy,
        executor: MigrationExecutor,
        unique_email_plan: MigrationPlan,
    ) -> None:
        with pytest.raises(ValidationError):
            executor.apply(unique_email_plan)
        with gate.write_transaction(policy) as conn:
            conn.execute_statement("UPDATE users SET email = 'c@x' WHERE id = 3")

        report = executor.apply(unique_email_plan)

        assert len(report.applied) == 1
        assert [r.status for r in executor.history()] == [StepStatus.APPLIED]
        assert executor.current_version() == 2

    def test_rejected_statement_fails_step_with_engine_error(
        self, seeded: ConcurrencyGate, executor: MigrationExecutor
    ) -> None:
        step = DropIndex(
            StepId("000002.0000.drop_index.users"), "users", index_name="idx_missing"
        )
        plan = MigrationPlan(VersionId(1), VersionId(2), (step,))
        seen: list[MigrationRecord] = []

        with pytest.raises(StatementError) as exc_info:
            executor.apply(plan, on_record=seen.append)

        assert exc_info.value.step_id == step.step_id
        assert exc_info.value.row_id is None
        assert [r.error_kind for r in seen] == ["statement"]
        assert executor.history()[0].status is StepStatus.FAILED

    def test_change_column_type_rejected_before_ledger(self, executor: MigrationExecutor) -> None:
        step = ChangeColumnType(
            StepId("000001.0000.change_column_type.t"),
            "t",
            column_name="c",
            old_type=TEXT,
            new_type=INT,
        )
        plan = MigrationPlan(VersionId(0), VersionId(1), (step,))

        with pytest.raises(ValidationError):
            executor.apply(plan)

        assert executor.history() == []

    def test_lock_timeout_leaves_store_unchanged(
        self,
        seeded: ConcurrencyGate,
        connection_factory,
        dialect: SQLiteDialect,
        metrics_registry: MetricsRegistry,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        sleeps: list[float] = []
        other = ConcurrencyGate(connection_factory, sleep=sleeps.append, metrics=metrics_registry)
        policy = RetryPolicy(max_attempts=3, base_delay=0.01, multiplier=2.0, max_total_wait=1.0)
        executor = MigrationExecutor(other, MigrationLedger(), dialect, policy, metrics=metrics_registry)
        holder = seeded.acquire_write()
        try:
            with pytest.raises(LockTimeoutError) as exc_info:
                executor.apply(MigrationPlanner().plan(users_v1, users_v2))
        finally:
            seeded.release_write(holder, commit=False)
            other.close()

        assert exc_info.value.attempts == 3
        assert len(sleeps) == 2
        assert select(seeded, "SELECT count(*) AS n FROM users") == [{"n": 5}]


@pytest.mark.integration
class TestRecovery:
    """Tests for idempotence, crash recovery, drift and cancellation."""

    def test_reapply_is_a_no_op(
        self,
        seeded: ConcurrencyGate,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        plan = MigrationPlanner().plan(users_v1, users_v2)
        executor.apply(plan)

        report = executor.apply(plan)

        assert report.applied == []
        assert [r.skipped for r in report.records] == [True]
        assert len(executor.history()) == 1
        assert executor.current_version() == 2

    def test_interrupted_step_is_rerun(
        self,
        seeded: ConcurrencyGate,
        policy: RetryPolicy,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        """An APPLYING record, as left by a process killed mid-step, is retried."""
        plan = MigrationPlanner().plan(users_v1, users_v2)
        ledger = MigrationLedger()
        with seeded.write_transaction(policy) as conn:
            ledger.ensure_table(conn)
            ledger.begin(conn, plan.steps[0])

        report = executor.apply(plan)

        assert len(report.applied) == 1
        assert [r.status for r in executor.history()] == [StepStatus.APPLIED]
        assert select(seeded, "SELECT count(*) AS n FROM users") == [{"n": 5}]

    def test_changed_step_is_drift(
        self,
        seeded: ConcurrencyGate,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        plan = MigrationPlanner().plan(users_v1, users_v2)
        executor.apply(plan)
        step = plan.steps[0]
        assert isinstance(step, RebuildTable)
        altered_table = TableDescriptor(
            "users",
            (
                ColumnDescriptor("id", INT, nullable=False),
                ColumnDescriptor("email", TEXT, nullable=False, default="unknown"),
            ),
            constraints=step.new.constraints,
        )
        altered = SchemaVersion(VersionId(2), frozenset({altered_table}))
        altered_plan = MigrationPlanner().plan(users_v1, altered)

        with pytest.raises(SchemaDriftError) as exc_info:
            executor.apply(altered_plan)

        assert exc_info.value.step_id == step.step_id

    def test_store_at_unexpected_version_is_drift(
        self, seeded: ConcurrencyGate, executor: MigrationExecutor, users_v2: SchemaVersion
    ) -> None:
        v3 = SchemaVersion(VersionId(3), users_v2.tables)
        plan = MigrationPlanner().plan(users_v2, v3)

        with pytest.raises(SchemaDriftError):
            executor.apply(plan)

    def test_cancel_before_first_step(
        self,
        seeded: ConcurrencyGate,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        plan = MigrationPlanner().plan(users_v1, users_v2)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(MigrationCancelledError) as exc_info:
            executor.apply(plan, cancel=token)

        assert exc_info.value.next_step_id == plan.steps[0].step_id
        assert executor.history() == []
        assert executor.current_version() == 1
        assert not [
            row
            for row in select(seeded, "SELECT name FROM sqlite_master")
            if row["name"].startswith("_migration_ledger")
        ]

    def test_cancel_between_steps(
        self, gate: ConcurrencyGate, policy: RetryPolicy, executor: MigrationExecutor
    ) -> None:
        old = SchemaVersion(VersionId(0), frozenset())
        new = SchemaVersion(
            VersionId(1),
            frozenset(
                {
                    TableDescriptor("a", (ColumnDescriptor("id", INT),)),
                    TableDescriptor("b", (ColumnDescriptor("id", INT),)),
                }
            ),
        )
        plan = MigrationPlanner().plan(old, new)
        token = CancellationToken()

        with pytest.raises(MigrationCancelledError) as exc_info:
            executor.apply(plan, cancel=token, on_record=lambda record: token.cancel())

        assert exc_info.value.next_step_id == plan.steps[1].step_id
        assert [r.step_id for r in executor.history()] == [plan.steps[0].step_id]

        report = executor.apply(plan)
        assert [r.skipped for r in report.records] == [True, False]
        assert executor.current_version() == 1


@pytest.mark.integration
@pytest.mark.slow
class TestReaderIsolation:
    """Readers never observe a half-applied step."""

    def test_reader_sees_old_or_new_table(
        self,
        seeded: ConcurrencyGate,
        executor: MigrationExecutor,
        users_v1: SchemaVersion,
        users_v2: SchemaVersion,
    ) -> None:
        observed: list[tuple[str, ...]] = []
        errors: list[BaseException] = []
        stop = threading.Event()

        def poll() -> None:
            try:
                while not stop.is_set():
                    with seeded.read_snapshot() as conn:
                        columns = tuple(r["name"] for r in conn.execute_statement("PRAGMA table_info(users)"))
                        count = conn.execute_statement("SELECT count(*) AS n FROM users")[0]["n"]
                    assert count == 5
                    observed.append(columns)
            except BaseException as exc:
                errors.append(exc)

        reader = threading.Thread(target=poll)
        reader.start()
        try:
            executor.apply(MigrationPlanner().plan(users_v1, users_v2))
        finally:
            stop.set()
            reader.join(timeout=10)

        assert errors == []
        assert set(observed) <= {("id", "name"), ("id", "email")}
