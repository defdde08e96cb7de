"""Pytest configuration and fixtures for migration_engine tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from migration_engine.adapters.outbound import SQLiteConnectionFactory, SQLiteDialect
from migration_engine.domain.entities import (
    ColumnDescriptor,
    ConstraintDescriptor,
    SchemaVersion,
    TableDescriptor,
)
from migration_engine.domain.services import ConcurrencyGate, MigrationLedger
from migration_engine.domain.value_objects import DurabilityMode, LogicalType, RetryPolicy, VersionId
from migration_engine.infrastructure.config import (
    Config,
    ObservabilityConfig,
    RetryConfig,
    StoreConfig,
)
from migration_engine.infrastructure.container import Container
from migration_engine.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store_path(temp_dir: Path) -> Path:
    return temp_dir / "store.db"


@pytest.fixture
def connection_factory(store_path: Path) -> SQLiteConnectionFactory:
    """Connection factory with NORMAL durability (faster for tests)."""
    return SQLiteConnectionFactory(store_path, durability=DurabilityMode.NORMAL)


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def policy() -> RetryPolicy:
    """A short policy: five attempts, at most a quarter second of waiting."""
    return RetryPolicy(max_attempts=5, base_delay=0.01, multiplier=2.0, max_total_wait=0.25)


@pytest.fixture
def gate(
    connection_factory: SQLiteConnectionFactory, metrics_registry: MetricsRegistry
) -> Generator[ConcurrencyGate, None, None]:
    g = ConcurrencyGate(connection_factory, metrics=metrics_registry)
    yield g
    g.close()


@pytest.fixture
def dialect() -> SQLiteDialect:
    return SQLiteDialect()


@pytest.fixture
def ledger() -> MigrationLedger:
    return MigrationLedger()


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Provide a test configuration with a temporary store."""
    return Config(
        store=StoreConfig(path=temp_dir / "data" / "store.db", durability="normal"),
        retry=RetryConfig(
            max_attempts=5,
            base_delay_seconds=0.01,
            multiplier=2.0,
            max_total_wait_seconds=0.25,
        ),
        observability=ObservabilityConfig(log_level="DEBUG", log_format="console"),
    )


@pytest.fixture
def container() -> Generator[Container, None, None]:
    """Provide a fresh DI container for each test."""
    c = Container()
    yield c
    c.clear()


@pytest.fixture
def users_v1() -> SchemaVersion:
    """users(id INTEGER PRIMARY KEY, name TEXT)."""
    users = TableDescriptor(
        "users",
        (
            ColumnDescriptor("id", LogicalType.INTEGER, nullable=False),
            ColumnDescriptor("name", LogicalType.TEXT),
        ),
        constraints=frozenset({ConstraintDescriptor.primary_key("id")}),
    )
    return SchemaVersion(VersionId(1), frozenset({users}))


@pytest.fixture
def users_v2() -> SchemaVersion:
    """users with ``name`` dropped and ``email TEXT NOT NULL DEFAULT ''`` added."""
    users = TableDescriptor(
        "users",
        (
            ColumnDescriptor("id", LogicalType.INTEGER, nullable=False),
            ColumnDescriptor("email", LogicalType.TEXT, nullable=False, default=""),
        ),
        constraints=frozenset({ConstraintDescriptor.primary_key("id")}),
    )
    return SchemaVersion(VersionId(2), frozenset({users}))


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
