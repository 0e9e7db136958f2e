"""OpenTelemetry tracing for the archiver.

Every delivery is handled inside an ``archive`` span. When the publisher put a
W3C ``traceparent`` (and optionally ``tracestate``) into the AMQP headers, the
span joins that trace; otherwise it starts a new one.

Usage:
    >>> tracer = start_tracing("amqp-archive")
    >>> token = context.attach(context_from_headers(incoming.headers))
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from opentelemetry import trace  # type: ignore
from opentelemetry.context import Context  # type: ignore
from opentelemetry.propagators.textmap import Getter  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator  # type: ignore

_PROPAGATOR = TraceContextTextMapPropagator()


def _header_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return value if isinstance(value, str) else str(value)


class AmqpHeaderGetter(Getter):
    """Read trace headers from an AMQP header table.

    Header tables carry bytes, numbers and nested tables as well as strings;
    lookups are case-insensitive and every value is handed over as text.
    """

    def get(self, carrier: Mapping[str, Any], key: str) -> Optional[List[str]]:
        wanted = key.lower()
        for name, value in carrier.items():
            if str(name).lower() == wanted and value is not None:
                return [_header_text(value)]
        return None

    def keys(self, carrier: Mapping[str, Any]) -> Iterable[str]:
        return [str(name) for name in carrier]


HEADER_GETTER = AmqpHeaderGetter()


def start_tracing(service_name: str = "amqp-archive", exporter: Optional[SpanExporter] = None) -> Tracer:
    """Install a tracer provider for this process and return its tracer.

    Spans go to ``exporter``, the console by default.
    """
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(SimpleSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    return provider.get_tracer(service_name)


def get_tracer(service_name: str = "amqp-archive") -> Tracer:
    return trace.get_tracer(service_name)


def context_from_headers(headers: Optional[Mapping[str, Any]]) -> Context:
    """Return the trace context carried by a delivery's headers (empty if none)."""
    return _PROPAGATOR.extract(headers or {}, getter=HEADER_GETTER)
