"""
Span helpers around the OpenTelemetry API.

Spans are observational only: nothing in the agent loop reads them back, and
without an SDK configured the API hands out no-op spans. Components accept a
Tracer-like object with a `span(name, **attributes)` context manager so tests
can swap in a recorder.
"""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "deepsearch")

# Attribute values must be primitives; longer strings are clipped
_MAX_ATTRIBUTE_LENGTH = 500


def _attribute(value: Any) -> Any:
    if isinstance(value, (bool, int, float)):
        return value
    text = str(value)
    return text if len(text) <= _MAX_ATTRIBUTE_LENGTH else text[:_MAX_ATTRIBUTE_LENGTH] + "..."


class Telemetry:
    """Starts named spans on the global OpenTelemetry tracer provider."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self._tracer = trace.get_tracer(service_name)

    @contextmanager
    def span(self, name: str, **attributes: Any) -> Iterator[Any]:
        with self._tracer.start_as_current_span(name) as span:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, _attribute(value))
            yield span

    @staticmethod
    def mark_error(span: Any, message: str) -> None:
        """Flag a span whose work failed without raising (e.g. an error-flagged search response)."""
        if span is not None:
            span.set_status(Status(StatusCode.ERROR, message))


_telemetry: Telemetry | None = None


def get_telemetry() -> Telemetry:
    global _telemetry
    if _telemetry is None:
        _telemetry = Telemetry()
    return _telemetry
