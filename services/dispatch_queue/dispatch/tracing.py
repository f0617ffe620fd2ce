"""OpenTelemetry tracing helpers for the producer and worker.

Spans are exported to the console; W3C trace context travels in AMQP headers
so a worker span continues the producer's trace.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from opentelemetry import trace  # type: ignore
from opentelemetry.propagate import get_global_textmap, inject, set_global_textmap  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator  # type: ignore


def start_tracing(service_name: str = "dispatch") -> Tracer:
    """Initialize a TracerProvider with a console exporter."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)

    set_global_textmap(TraceContextTextMapPropagator())
    return trace.get_tracer(service_name)


def get_tracer(service_name: str = "dispatch") -> Tracer:
    return trace.get_tracer(service_name)


def inject_headers(headers: Dict[str, str] | None = None) -> Dict[str, str]:
    """Inject current context into AMQP headers (dict[str, str])."""
    carrier: Dict[str, str] = {} if headers is None else dict(headers)
    inject(carrier)
    return carrier


def extract_context_from_headers(headers: Mapping[str, Any] | None):
    """Return a context object extracted from AMQP headers.

    Header values are converted to strings for the propagator.
    """
    carrier: Dict[str, str] = {}
    if headers:
        for k, v in headers.items():
            if isinstance(v, bytes):
                v = v.decode("utf-8", "replace")
            carrier[str(k)] = v if isinstance(v, str) else str(v)
    return get_global_textmap().extract(carrier)
