"""
DataLayer - the event processing engine.

The DataLayer ties together ambient context, the middleware pipeline, the
session event history and the event bus. Every emitted event goes through
the same sequence:

    1. Build the event (id, timestamp, format version, context snapshot, source)
    2. Run it through the middleware pipeline
    3. If the pipeline passed it on: append it to the history, then publish
       it on the bus (the commit)

A middleware that halts the chain cancels the event: it is never stored or
published. Cancellation is not an error.

Usage:
    from opendatalayer import DataLayer

    layer = DataLayer(source={"name": "storefront", "version": "2.1.0"})
    layer.set_context("page", {"path": "/checkout"})

    layer.on("ecommerce.*", lambda event: print(event.name))
    layer.emit("ecommerce.purchase", {"orderId": "A-1", "total": 42.0})

    layer.get_last_event().context  # {"page": {"path": "/checkout"}}
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .bus import EventBus, EventHandler, HandlerErrorCallback, Unsubscribe
from .context import ContextStore
from .events import Event, EventSource, now_iso
from .metrics import TimingContext
from .middleware import Continue, Middleware, MiddlewareError, MiddlewarePipeline
from .telemetry import add_event_to_span, set_span_attribute, traced
from .validation import EventValidator, ValidationError

if TYPE_CHECKING:
    from .dlq import DeadLetterQueue
    from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

# Non-strict checker used for input shape errors (always enforced)
_SHAPE_CHECKER = EventValidator()


class DataLayer:
    """
    Orchestrator composing the context store, pipeline, history and bus.

    Emission is serialized with a reentrant lock: one emission completes
    before the next begins. Handlers may emit further events while an event
    is being published; middleware may not emit while their own event is
    still in the pipeline.
    """

    def __init__(
        self,
        source: EventSource | Mapping[str, Any] | None = None,
        *,
        metrics: MetricsCollector | None = None,
        validate_events: bool = False,
        validator: EventValidator | None = None,
        dead_letter_queue: DeadLetterQueue | None = None,
        on_handler_error: HandlerErrorCallback | None = None,
    ):
        """
        Initialize the DataLayer.

        Args:
            source: Optional producing integration attached to every event,
                as an EventSource or a {"name", "version"} mapping
            metrics: Optional MetricsCollector for observability
            validate_events: If True, event names must follow {namespace}.{action}
            validator: Custom EventValidator (uses default if validate_events=True)
            dead_letter_queue: Optional DLQ capturing failed subscriber deliveries
            on_handler_error: Optional callback for isolated subscriber failures
        """
        self.source = EventSource.coerce(source)

        self._metrics = metrics
        self._validate_events = validate_events
        self._validator = validator if validator else EventValidator(strict=True)

        self._context = ContextStore()
        self._pipeline = MiddlewarePipeline()
        self._bus = EventBus(
            metrics=metrics,
            dead_letter_queue=dead_letter_queue,
            on_handler_error=on_handler_error,
        )

        self._lock = threading.RLock()
        self._events: list[Event] = []
        self._last_timestamp = ""
        self._in_flight: Event | None = None
        self._cancelled_count = 0

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @traced("odl.emit")
    def emit(
        self,
        name: str,
        data: Mapping[str, Any] | None = None,
        custom_dimensions: Mapping[str, Any] | None = None,
    ) -> Event:
        """
        Create, process, store and publish an event.

        Args:
            name: Dot-namespaced event name (e.g., "page.view")
            data: Optional event payload
            custom_dimensions: Optional flat mapping of primitive tags

        Returns:
            The committed event, or the event as built if middleware cancelled it

        Raises:
            ValueError: If name is empty, data is not a mapping, or custom
                dimensions are not a flat mapping of primitives
            ValidationError: If validate_events=True and the name is invalid
            MiddlewareError: If a middleware breaks the chain contract, or
                emit() is called by a middleware whose event is in flight
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("event name must be a non-empty string")
        if data is not None and not isinstance(data, Mapping):
            raise ValueError("data must be a mapping")
        dimensions_check = _SHAPE_CHECKER.validate_custom_dimensions(custom_dimensions)
        if not dimensions_check.valid:
            raise ValueError("; ".join(dimensions_check.errors))

        if self._validate_events:
            result = self._validator.validate_event_name(name)
            if not result.valid:
                raise ValidationError("; ".join(result.errors), name)

        set_span_attribute("odl.event.name", name)
        if self.source:
            set_span_attribute("odl.source", self.source.name)

        with self._lock:
            if self._in_flight is not None:
                raise MiddlewareError(
                    f"emit('{name}') called while event '{self._in_flight.name}' "
                    "is still in the middleware pipeline"
                )

            with TimingContext() as timing:
                event = self._build(name, data, custom_dimensions)
                self._in_flight = event
                try:
                    outcome = self._pipeline.execute(event, on_complete=self._commit)
                finally:
                    self._in_flight = None

            source_name = self.source.name if self.source else None
            if isinstance(outcome, Continue):
                if self._metrics:
                    self._metrics.record_event_committed(name, timing.elapsed_seconds, source_name)
                return outcome.event

            self._cancelled_count += 1
            add_event_to_span("odl.event.cancelled", {"odl.event.name": name, "odl.event.id": event.id})
            if self._metrics:
                self._metrics.record_event_cancelled(name, source_name)
            logger.debug(
                f"Event {name} cancelled by middleware",
                extra={"event_id": event.id, "reason": outcome.reason},
            )
            return event

    def _build(
        self,
        name: str,
        data: Mapping[str, Any] | None,
        custom_dimensions: Mapping[str, Any] | None,
    ) -> Event:
        # Wall-clock regressions are clamped so history timestamps never decrease
        timestamp = max(now_iso(), self._last_timestamp)
        self._last_timestamp = timestamp

        return Event(
            name=name,
            timestamp=timestamp,
            context=self._context.snapshot(),
            data=dict(data) if data is not None else None,
            custom_dimensions=dict(custom_dimensions) if custom_dimensions is not None else None,
            source=self.source,
        )

    def _commit(self, event: Event) -> None:
        """Store the event and publish it; the point it becomes observable."""
        self._in_flight = None
        self._events.append(event)

        if self._metrics:
            self._metrics.update_history_size(len(self._events))
        add_event_to_span("odl.event.committed", {"odl.event.name": event.name, "odl.event.id": event.id})
        logger.debug(f"Event committed: {event.name}", extra={"event_id": event.id})

        self._bus.emit(event)

    def get_events(self) -> tuple[Event, ...]:
        """Return the committed events in insertion order."""
        with self._lock:
            return tuple(self._events)

    def get_last_event(self) -> Event | None:
        """Return the most recently committed event, or None if there is none."""
        with self._lock:
            return self._events[-1] if self._events else None

    # ------------------------------------------------------------------
    # Subscriptions and middleware
    # ------------------------------------------------------------------

    def on(self, pattern: str, handler: EventHandler) -> Unsubscribe:
        """
        Subscribe to committed events matching ``pattern``.

        Returns:
            An idempotent unsubscribe function
        """
        return self._bus.on(pattern, handler)

    def use(self, fn: Middleware) -> None:
        """Append a middleware to the pipeline."""
        self._pipeline.use(fn)

    async def wait_for_pending(self, timeout: float = 30.0) -> int:
        """Wait for subscriber tasks scheduled from async handlers."""
        return await self._bus.wait_for_pending(timeout)

    @property
    def subscription_count(self) -> int:
        return len(self._bus.get_subscriptions())

    @property
    def middleware_count(self) -> int:
        return len(self._pipeline)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def get_context(self) -> dict[str, Any]:
        """Return the live context mapping."""
        return self._context.get()

    def set_context(self, key: str, value: Any) -> None:
        with self._lock:
            self._context.set(key, value)

    def update_context(self, key: str, partial: Mapping[str, Any]) -> None:
        with self._lock:
            self._context.update(key, partial)

    def remove_context(self, key: str) -> None:
        with self._lock:
            self._context.remove(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """
        Clear the event history and the context.

        Middleware and subscriptions are structural and stay registered.
        """
        with self._lock:
            self._events = []
            self._context.reset()
            self._cancelled_count = 0

        if self._metrics:
            self._metrics.update_history_size(0)
        logger.debug("DataLayer reset")

    def get_stats(self) -> dict[str, Any]:
        """
        Get data layer statistics.

        Returns:
            Dictionary with history, pipeline, context and bus statistics
        """
        with self._lock:
            stats: dict[str, Any] = {
                "events_committed": len(self._events),
                "events_cancelled": self._cancelled_count,
                "middleware": len(self._pipeline),
                "context_keys": self._context.keys(),
                "source": self.source.to_dict() if self.source else None,
                "validation_enabled": self._validate_events,
                "metrics_enabled": self._metrics is not None,
            }
        stats["bus"] = self._bus.get_stats()
        if self._metrics:
            stats["metrics"] = self._metrics.get_snapshot()
        return stats
