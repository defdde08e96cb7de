"""Infrastructure layer - cross-cutting concerns."""

from migration_engine.infrastructure.config import Config, get_config
from migration_engine.infrastructure.logging import setup_logging, get_logger
from migration_engine.infrastructure.metrics import setup_metrics, MetricsRegistry
from migration_engine.infrastructure.tracing import setup_tracing, get_tracer

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
]
