"""
OpenTelemetry spans for validation calls.

Only the API package is used here; without a configured SDK provider the
spans are no-ops, so tracing costs nothing unless a deployment opts in.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Optional

from opentelemetry import trace

TRACER_NAME = "fhir_validator"


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def trace_validation(resource_type: Optional[str]) -> Generator[Any, None, None]:
    with get_tracer().start_as_current_span("fhir.validate") as span:
        span.set_attribute("fhir.resource_type", resource_type or "unknown")
        yield span


@contextmanager
def trace_terminology_lookup(value_set_url: str) -> Generator[Any, None, None]:
    with get_tracer().start_as_current_span("fhir.terminology.lookup") as span:
        span.set_attribute("fhir.value_set", value_set_url)
        yield span
