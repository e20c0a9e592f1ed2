"""
Distributed tracing using OpenTelemetry.

Instruments engine phases (table runs, staging, loading, comparison) so
a slow table can be broken down per thread and per side.
"""

from .context import add_span_attributes, trace_operation
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "add_span_attributes",
]
