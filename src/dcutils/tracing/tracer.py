"""
OpenTelemetry tracer setup.

The provider is installed once per process. Spans leave the process
only when an OTLP endpoint is given (argument or ``OTLP_ENDPOINT``) or
``TRACE_CONSOLE=true`` is set; otherwise they are created and dropped.
"""

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None
_tracer: trace.Tracer | None = None


def _span_processors(otlp_endpoint: str | None, console_export: bool) -> dict[str, SpanProcessor]:
    processors: dict[str, SpanProcessor] = {}
    if otlp_endpoint:
        # grpc exporter pulls in grpcio; only import it when it is used
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        processors[f"otlp({otlp_endpoint})"] = BatchSpanProcessor(
            OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        )
    if console_export:
        processors["console"] = BatchSpanProcessor(ConsoleSpanExporter())
    return processors


def initialize_tracing(
    service_name: str = "dcompare",
    otlp_endpoint: str | None = None,
    console_export: bool = False,
) -> trace.Tracer:
    """
    Install the global tracer provider and return the engine tracer.

    A second call returns the existing tracer unchanged.
    """
    global _provider, _tracer

    if _tracer is not None:
        return _tracer

    endpoint = otlp_endpoint or os.getenv("OTLP_ENDPOINT")
    console = console_export or os.getenv("TRACE_CONSOLE", "").lower() == "true"

    _provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    processors = _span_processors(endpoint, console)
    for processor in processors.values():
        _provider.add_span_processor(processor)

    trace.set_tracer_provider(_provider)
    _tracer = _provider.get_tracer(service_name)

    logger.debug("Tracing ready for %s, exporters: %s", service_name, ", ".join(processors) or "none")
    return _tracer


def get_tracer() -> trace.Tracer:
    """Engine tracer, set up with defaults on first use."""
    return _tracer or initialize_tracing()


def shutdown_tracing() -> None:
    """Flush queued spans. Safe to call when tracing never started."""
    global _provider, _tracer

    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    _tracer = None
