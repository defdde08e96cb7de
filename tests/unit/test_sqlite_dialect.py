"""Unit tests for SQLite statement rendering and schema inspection."""

from __future__ import annotations

import pytest

from migration_engine.adapters.outbound import (
    SQLiteConnectionFactory,
    SQLiteDialect,
    SQLiteSchemaInspector,
)
from migration_engine.adapters.outbound.sqlite_schema_inspector import parse_default
from migration_engine.domain.entities import (
    ColumnDescriptor,
    ColumnProjection,
    ConstraintDescriptor,
    IndexDescriptor,
    ProjectionEntry,
    TableDescriptor,
)
from migration_engine.domain.exceptions import StatementError, ValidationError
from migration_engine.domain.services import ConcurrencyGate
from migration_engine.domain.value_objects import LogicalType, RetryPolicy


@pytest.mark.unit
class TestSQLiteDialect:
    """Tests for SQLiteDialect."""

    def test_quote_escapes(self, dialect: SQLiteDialect) -> None:
        assert dialect.quote('we"ird') == '"we""ird"'

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "NULL"),
            (True, "1"),
            (42, "42"),
            (1.5, "1.5"),
            ("it's", "'it''s'"),
            (b"\x01\xff", "X'01ff'"),
        ],
    )
    def test_literal(self, dialect: SQLiteDialect, value: object, expected: str) -> None:
        assert dialect.literal(value) == expected

    def test_create_table(self, dialect: SQLiteDialect) -> None:
        table = TableDescriptor(
            "users",
            (
                ColumnDescriptor("id", LogicalType.INTEGER, nullable=False),
                ColumnDescriptor("email", LogicalType.TEXT, nullable=False, default=""),
            ),
            constraints=frozenset({ConstraintDescriptor.primary_key("id")}),
        )

        sql = dialect.create_table(table, name="_rebuild_users_x")

        assert sql.startswith('CREATE TABLE "_rebuild_users_x" (')
        assert '"id" INTEGER NOT NULL' in sql
        assert "\"email\" TEXT NOT NULL DEFAULT ''" in sql
        assert 'PRIMARY KEY ("id")' in sql

    def test_foreign_key_and_check(self, dialect: SQLiteDialect) -> None:
        fk = ConstraintDescriptor.foreign_key(["user_id"], "users", ["id"], name="fk_user")
        check = ConstraintDescriptor.check("amount > 0")

        assert dialect.constraint_definition(fk) == (
            'CONSTRAINT "fk_user" FOREIGN KEY ("user_id") REFERENCES "users" ("id")'
        )
        assert dialect.constraint_definition(check) == "CHECK (amount > 0)"

    def test_create_unique_index(self, dialect: SQLiteDialect) -> None:
        index = IndexDescriptor("idx_email", ("email", "id"), unique=True)
        assert dialect.create_index("users", index) == (
            'CREATE UNIQUE INDEX "idx_email" ON "users" ("email", "id")'
        )

    def test_copy_rows(self, dialect: SQLiteDialect) -> None:
        projection = ColumnProjection(
            (
                ProjectionEntry("id", LogicalType.INTEGER, "id", LogicalType.INTEGER, None, True),
                ProjectionEntry("email", LogicalType.TEXT, None, None, "", True),
            )
        )

        assert dialect.copy_rows("users", "shadow", projection) == (
            'INSERT INTO "shadow" ("id", "email") SELECT "id", \'\' FROM "users" ORDER BY rowid'
        )
        assert dialect.copy_rows("users", "shadow", projection, single_row=True).endswith(
            'FROM "users" WHERE rowid = ? ORDER BY rowid'
        )

    def test_projection_coalesces_not_null_default(self, dialect: SQLiteDialect) -> None:
        entry = ProjectionEntry("n", LogicalType.INTEGER, "n", LogicalType.TEXT, 0, True)
        assert dialect.projection_expression(entry) == 'COALESCE(CAST("n" AS INTEGER), 0)'

    def test_foreign_key_check_scope(self, dialect: SQLiteDialect) -> None:
        assert dialect.foreign_key_check() == "PRAGMA foreign_key_check"
        assert dialect.foreign_key_check("users") == 'PRAGMA foreign_key_check("users")'


@pytest.mark.unit
class TestConversionsOnStore:
    """Copy expressions evaluated by SQLite itself."""

    @pytest.mark.parametrize(
        ("source_type", "target_type", "value", "expected"),
        [
            (LogicalType.TEXT, LogicalType.INTEGER, "42", 42),
            (LogicalType.INTEGER, LogicalType.TEXT, 7, "7"),
            (LogicalType.TEXT, LogicalType.BOOLEAN, "Yes", 1),
            (LogicalType.TEXT, LogicalType.BOOLEAN, "no", 0),
            (LogicalType.INTEGER, LogicalType.BOOLEAN, 5, 1),
            (LogicalType.INTEGER, LogicalType.TIMESTAMP, 0, "1970-01-01T00:00:00"),
            (LogicalType.TIMESTAMP, LogicalType.INTEGER, "1970-01-02T00:00:00", 86400),
            (LogicalType.TEXT, LogicalType.INTEGER, None, None),
        ],
    )
    def test_rule(
        self,
        gate: ConcurrencyGate,
        policy: RetryPolicy,
        dialect: SQLiteDialect,
        source_type: LogicalType,
        target_type: LogicalType,
        value: object,
        expected: object,
    ) -> None:
        entry = ProjectionEntry("v", target_type, "v", source_type, None, False)
        with gate.write_transaction(policy) as conn:
            conn.execute_statement("CREATE TABLE src (v)")
            conn.execute_statement("INSERT INTO src (v) VALUES (?)", (value,))
            rows = conn.execute_statement(
                f"SELECT {dialect.projection_expression(entry)} AS v FROM src"
            )
        assert rows == [{"v": expected}]


@pytest.mark.unit
class TestSchemaInspector:
    """Tests for SQLiteSchemaInspector."""

    def test_round_trip(
        self, gate: ConcurrencyGate, policy: RetryPolicy, dialect: SQLiteDialect
    ) -> None:
        users = TableDescriptor(
            "users",
            (
                ColumnDescriptor("id", LogicalType.INTEGER, nullable=False),
                ColumnDescriptor("email", LogicalType.TEXT, nullable=False, default="n/a"),
                ColumnDescriptor("active", LogicalType.BOOLEAN, default=True),
                ColumnDescriptor("score", LogicalType.REAL, default=0.5),
                ColumnDescriptor("avatar", LogicalType.BLOB, default=b"\x00"),
                ColumnDescriptor("seen_at", LogicalType.TIMESTAMP),
            ),
            indexes=frozenset({IndexDescriptor("idx_users_seen", ("seen_at",))}),
            constraints=frozenset(
                {ConstraintDescriptor.primary_key("id"), ConstraintDescriptor.unique("email")}
            ),
        )
        orders = TableDescriptor(
            "orders",
            (
                ColumnDescriptor("id", LogicalType.INTEGER, nullable=False),
                ColumnDescriptor("user_id", LogicalType.INTEGER),
            ),
            constraints=frozenset(
                {
                    ConstraintDescriptor.primary_key("id"),
                    ConstraintDescriptor.foreign_key(["user_id"], "users", ["id"]),
                }
            ),
        )
        with gate.write_transaction(policy) as conn:
            for table in (users, orders):
                conn.execute_statement(dialect.create_table(table))
                for index in table.indexes:
                    conn.execute_statement(dialect.create_index(table.name, index))
            conn.execute_statement("CREATE TABLE _migration_ledger (step_id TEXT)")

        with gate.read_snapshot() as conn:
            described = SQLiteSchemaInspector().inspect(conn)

        assert described == {"orders": orders, "users": users}

    @pytest.mark.parametrize(
        ("literal", "logical_type", "expected"),
        [
            (None, LogicalType.TEXT, None),
            ("NULL", LogicalType.INTEGER, None),
            ("'a''b'", LogicalType.TEXT, "a'b"),
            ("X'00ff'", LogicalType.BLOB, b"\x00\xff"),
            ("1", LogicalType.BOOLEAN, True),
            ("-3", LogicalType.INTEGER, -3),
            ("2", LogicalType.REAL, 2.0),
        ],
    )
    def test_parse_default(
        self, literal: str | None, logical_type: LogicalType, expected: object
    ) -> None:
        assert parse_default(literal, logical_type) == expected


@pytest.mark.unit
class TestStoreErrors:
    """Driver errors surface as engine errors."""

    def test_rejected_ddl_is_statement_error(
        self, connection_factory: SQLiteConnectionFactory, dialect: SQLiteDialect
    ) -> None:
        conn = connection_factory.open()
        try:
            conn.execute_statement("CREATE TABLE a (x INTEGER)")
            conn.execute_statement("CREATE TABLE b (x INTEGER)")
            conn.execute_statement(dialect.create_index("a", IndexDescriptor("idx", ("x",))))

            with pytest.raises(StatementError, match="already exists"):
                conn.execute_statement(dialect.create_index("b", IndexDescriptor("idx", ("x",))))
        finally:
            conn.close()

    def test_constraint_violation_is_plain_validation_error(
        self, connection_factory: SQLiteConnectionFactory
    ) -> None:
        conn = connection_factory.open()
        try:
            conn.execute_statement("CREATE TABLE a (x INTEGER NOT NULL)")

            with pytest.raises(ValidationError) as exc_info:
                conn.execute_statement("INSERT INTO a (x) VALUES (NULL)")
            assert not isinstance(exc_info.value, StatementError)
        finally:
            conn.close()
