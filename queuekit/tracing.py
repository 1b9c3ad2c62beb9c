"""OpenTelemetry tracing helpers for producers and consumers.

Spans are exported to the console once `start_tracing` is called. Without it
the global no-op provider is used, and header injection is a cheap no-op.
"""

from __future__ import annotations

from typing import Dict, Mapping, Any

from opentelemetry import trace  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore
from opentelemetry.propagate import get_global_textmap, set_global_textmap, inject  # type: ignore
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator  # type: ignore


def start_tracing(service_name: str = "queuekit") -> Tracer:
    """Initialize a TracerProvider with a console exporter."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    from opentelemetry.sdk.trace.export import ConsoleSpanExporter  # type: ignore
    exporter = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    # W3C tracecontext for message headers
    set_global_textmap(TraceContextTextMapPropagator())

    return trace.get_tracer(service_name)


def get_tracer(service_name: str = "queuekit") -> Tracer:
    return trace.get_tracer(service_name)


def inject_headers(headers: Mapping[str, Any] | None = None) -> Dict[str, Any]:
    """Return a copy of ``headers`` with the current trace context injected."""
    carrier: Dict[str, Any] = {} if headers is None else dict(headers)
    inject(carrier)
    return carrier


def extract_context_from_headers(headers: Mapping[str, Any] | None):
    """Return a context object extracted from message headers.

    Converts header values to strings to satisfy the propagator requirements.
    """
    carrier: Dict[str, str] = {}
    if headers:
        for k, v in headers.items():
            carrier[str(k)] = v if isinstance(v, str) else str(v)
    return get_global_textmap().extract(carrier)
