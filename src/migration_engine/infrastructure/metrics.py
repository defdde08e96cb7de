"""Prometheus metrics for the migration engine."""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    start_http_server,
)


class MetricsRegistry:
    """Registry of all migration engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Step metrics
        self.steps_total = Counter(
            "migration_steps_total",
            "Total migration steps processed",
            ["kind", "status"],  # status: applied, skipped, failed
            registry=self._registry,
        )

        self.step_duration_seconds = Histogram(
            "migration_step_duration_seconds",
            "Migration step duration in seconds",
            ["kind"],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0),
            registry=self._registry,
        )

        # Rebuild metrics
        self.rebuild_rows_copied_total = Counter(
            "migration_rebuild_rows_copied_total",
            "Rows copied into shadow tables by table rebuilds",
            registry=self._registry,
        )

        # Lock metrics
        self.busy_retries_total = Counter(
            "migration_busy_retries_total",
            "Write lock attempts that found the lock busy and backed off",
            registry=self._registry,
        )

        self.lock_timeouts_total = Counter(
            "migration_lock_timeouts_total",
            "Write transactions abandoned after exhausting their retry policy",
            registry=self._registry,
        )

        self.lock_wait_seconds = Histogram(
            "migration_lock_wait_seconds",
            "Time spent acquiring the write lock",
            buckets=(0.0001, 0.001, 0.01, 0.1, 0.5, 1.0, 5.0, 10.0),
            registry=self._registry,
        )

        # Engine info
        self.info = Info(
            "migration_engine",
            "Migration engine information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up the Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Custom registry; the default one is reused if omitted

    Returns:
        The metrics registry
    """
    global _metrics
    if registry is not None:
        _metrics = MetricsRegistry(registry)
    elif _metrics is None:
        _metrics = MetricsRegistry()

    from migration_engine import __version__
    _metrics.info.info({"version": __version__})

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
