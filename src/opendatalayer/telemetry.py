"""
OpenTelemetry integration for the data layer.

``DataLayer.emit`` runs inside an ``odl.emit`` span carrying the event name
and source; the commit is recorded as a span event. Everything here is a
no-op when OpenTelemetry is not installed or no tracer provider is set.

Usage:
    from opendatalayer.telemetry import traced

    @traced("checkout.submit")
    def submit_order(order):
        layer.emit("ecommerce.purchase", {"orderId": order.id})
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore


F = TypeVar("F", bound=Callable[..., Any])

TRACER_NAME = "opendatalayer"


def is_otel_available() -> bool:
    """Check if OpenTelemetry is available."""
    return OTEL_AVAILABLE


def get_tracer(name: str = TRACER_NAME) -> Any:
    """Return an OpenTelemetry tracer, or None without OTEL."""
    if not OTEL_AVAILABLE:
        return None
    return trace.get_tracer(name)


def get_current_span() -> Any:
    """Return the current OpenTelemetry span, or None without OTEL."""
    if not OTEL_AVAILABLE:
        return None
    return trace.get_current_span()


def traced(span_name: str | None = None) -> Callable[[F], F]:
    """
    Run a synchronous function inside a span.

    Exceptions are recorded on the span and re-raised. Without OpenTelemetry
    the function is returned unchanged.

    Args:
        span_name: Name for the span (defaults to the function name)
    """

    def decorator(func: F) -> F:
        if not OTEL_AVAILABLE:
            return func

        name = span_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with get_tracer().start_as_current_span(name):
                return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def _recording_span() -> Any:
    span = get_current_span()
    return span if span is not None and span.is_recording() else None


def add_event_to_span(name: str, attributes: dict[str, Any] | None = None) -> None:
    """Add an event to the current span if one is recording."""
    span = _recording_span()
    if span is not None:
        span.add_event(name, attributes=attributes or {})


def set_span_attribute(key: str, value: Any) -> None:
    """Set an attribute on the current span if one is recording."""
    span = _recording_span()
    if span is not None:
        span.set_attribute(key, value)
