"""
Span helpers used around engine phases.
"""

from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from .tracer import get_tracer


def _set_attributes(span, attributes: dict) -> None:
    # OTel rejects None; numbers are stringified so thread/batch tags group as labels
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, str(value))


@contextmanager
def trace_operation(
    operation_name: str,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    **attributes
):
    """
    Run the block inside a span named ``operation_name``.

    An exception marks the span as errored (``error``, ``error.type`` and
    ``error.message`` attributes plus an exception event) and propagates.

    Example:
        >>> with trace_operation("stage_fingerprints", table="customers", thread=1) as span:
        ...     span.set_attribute("rows", str(store.write(name, fingerprints)))
    """
    with get_tracer().start_as_current_span(
        operation_name, kind=kind, record_exception=False, set_status_on_exception=False
    ) as span:
        _set_attributes(span, attributes)
        try:
            yield span
        except Exception as exc:
            _set_attributes(span, {"error.type": type(exc).__name__, "error.message": exc})
            span.set_attribute("error", True)
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise


def add_span_attributes(**attributes) -> None:
    """Tag the active span; a no-op outside any span."""
    span = trace.get_current_span()
    if span.is_recording():
        _set_attributes(span, attributes)
