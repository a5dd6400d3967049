"""Spans around database and remote calls.

Only the OpenTelemetry API is used: the host application installs the tracer
provider and exporter, and without one every span is a no-op.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Optional

from opentelemetry import trace

_tracer = trace.get_tracer("querypanel")


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Opens a span; attributes whose value is None are dropped."""
    present = {k: v for k, v in (attributes or {}).items() if v is not None}
    with _tracer.start_as_current_span(name, attributes=present or None) as current:
        yield current
