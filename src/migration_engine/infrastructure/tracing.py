"""OpenTelemetry tracing for migration runs.

One ``migration.apply`` span covers a plan; each step gets a child span
named after its kind (``migration.step.rebuild_table``). Attributes are
namespaced under ``migration.``.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

_TRACER_NAME = "migration_engine"
_ATTRIBUTE_PREFIX = "migration."

_tracer: trace.Tracer | None = None


def setup_tracing(
    service_name: str = _TRACER_NAME,
    otlp_endpoint: str | None = None,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install a tracer provider for the process.

    Args:
        service_name: ``service.name`` resource attribute
        otlp_endpoint: OTLP gRPC collector endpoint; spans are only exported
            when this or ``console_export`` is set
        console_export: Also print finished spans to stdout

    Returns:
        The engine's tracer
    """
    global _tracer

    from migration_engine import __version__

    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__})
    )
    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(_TRACER_NAME)
    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the engine's tracer (a no-op one until ``setup_tracing`` runs)."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(_TRACER_NAME)
    return _tracer


def span_attributes(**attributes: Any) -> dict[str, Any]:
    """Namespace ``attributes`` under ``migration.``, dropping None values."""
    result: dict[str, Any] = {}
    for key, value in attributes.items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        result[_ATTRIBUTE_PREFIX + key] = value
    return result


@contextmanager
def trace_span(name: str, **attributes: Any) -> Generator[trace.Span, None, None]:
    """
    Run a block inside a span.

    Exceptions are recorded on the span, which is marked as an error, and
    re-raised unchanged.

    Args:
        name: Span name
        **attributes: Set on the span through ``span_attributes``
    """
    with get_tracer().start_as_current_span(name, attributes=span_attributes(**attributes)) as span:
        yield span
