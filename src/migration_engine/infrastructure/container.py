"""Dependency injection container."""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from migration_engine.infrastructure.config import Config
from migration_engine.infrastructure.logging import setup_logging
from migration_engine.infrastructure.metrics import MetricsRegistry, get_metrics, setup_metrics
from migration_engine.infrastructure.tracing import setup_tracing

T = TypeVar("T")


class Container:
    """
    Simple dependency injection container.

    Supports singleton and factory registrations with lazy initialization.
    """

    def __init__(self) -> None:
        """Initialize the container."""
        self._singletons: dict[type, Any] = {}
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        """Register an already built instance under ``interface``."""
        self._singletons[interface] = instance
        self._instances[interface] = instance

    def register_factory(
        self,
        interface: type[T],
        factory: Callable[[Container], T],
    ) -> None:
        """
        Register a factory for lazy instantiation.

        The factory runs on first resolve; its result is cached.
        """
        self._factories[interface] = factory

    def resolve(self, interface: type[T]) -> T:
        """
        Resolve a dependency.

        Raises:
            KeyError: If no registration exists for the interface
        """
        if interface in self._instances:
            return self._instances[interface]

        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance

        raise KeyError(f"No registration found for {interface}")

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        return interface in self._singletons or interface in self._factories

    def clear(self) -> None:
        """Clear all registrations and instances."""
        self._singletons.clear()
        self._factories.clear()
        self._instances.clear()


def build_container(config: Config, metrics: MetricsRegistry | None = None) -> Container:
    """
    Wire the migration engine for one store.

    Args:
        config: Engine configuration; must carry a retry policy.
        metrics: Metrics registry (the global one if omitted)

    Returns:
        A container resolving every engine component, Migrator included.

    Raises:
        ValueError: If the configuration has no retry policy.
    """
    from migration_engine.adapters.outbound import (
        SQLiteConnectionFactory,
        SQLiteDialect,
        SQLiteSchemaInspector,
    )
    from migration_engine.application import MigrationExecutor, Migrator
    from migration_engine.domain.services import (
        ConcurrencyGate,
        MigrationLedger,
        MigrationPlanner,
    )

    policy = config.retry_policy()
    container = Container()
    container.register_singleton(Config, config)
    container.register_singleton(MetricsRegistry, metrics or get_metrics())

    container.register_factory(
        SQLiteConnectionFactory,
        lambda c: SQLiteConnectionFactory(
            config.store.path,
            durability=config.store.durability_mode,
            busy_timeout_ms=config.store.busy_timeout_ms,
        ),
    )
    container.register_factory(
        ConcurrencyGate,
        lambda c: ConcurrencyGate(
            c.resolve(SQLiteConnectionFactory), metrics=c.resolve(MetricsRegistry)
        ),
    )
    container.register_factory(SQLiteDialect, lambda c: SQLiteDialect())
    container.register_factory(MigrationLedger, lambda c: MigrationLedger())
    container.register_factory(MigrationPlanner, lambda c: MigrationPlanner())
    container.register_factory(SQLiteSchemaInspector, lambda c: SQLiteSchemaInspector())
    container.register_factory(
        MigrationExecutor,
        lambda c: MigrationExecutor(
            c.resolve(ConcurrencyGate),
            c.resolve(MigrationLedger),
            c.resolve(SQLiteDialect),
            policy,
            metrics=c.resolve(MetricsRegistry),
        ),
    )
    container.register_factory(
        Migrator,
        lambda c: Migrator(
            c.resolve(ConcurrencyGate),
            c.resolve(MigrationPlanner),
            c.resolve(MigrationExecutor),
            c.resolve(SQLiteSchemaInspector),
        ),
    )
    return container


def setup_observability(config: Config) -> MetricsRegistry:
    """
    Configure logging, tracing and metrics from ``config.observability``.

    The metrics HTTP server only starts when a port is configured.

    Returns:
        The metrics registry to pass to ``build_container``.
    """
    settings = config.observability
    setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        service_name=settings.otel_service_name,
    )
    setup_tracing(service_name=settings.otel_service_name, otlp_endpoint=settings.otel_endpoint)
    if settings.metrics_port is not None:
        return setup_metrics(settings.metrics_port)
    return get_metrics()

