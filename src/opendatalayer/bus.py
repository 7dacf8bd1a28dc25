"""
Event Bus - pattern-keyed publish/subscribe fan-out.

The bus delivers committed events to every subscriber whose pattern matches
the event name. It knows nothing about context or middleware; the DataLayer
publishes on it once an event has passed the pipeline.

Pattern Grammar:
    - "*" matches every event
    - "{namespace}.*" matches every event whose name starts with
      "{namespace}." (nested actions included, e.g. "page.*" matches
      "page.view" and "page.section.view")
    - Any other pattern matches the event name exactly

    Any other use of "*" is rejected with PatternError at registration.

Delivery Guarantees:
    - Handlers run synchronously, in registration order
    - A failing handler never prevents later handlers from receiving the event
    - Handlers registered while an event is being dispatched do not receive it

Usage:
    from opendatalayer import EventBus

    bus = EventBus()

    def on_page(event):
        print(f"Page event: {event.name}")

    unsubscribe = bus.on("page.*", on_page)
    bus.emit(event)
    unsubscribe()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .dlq import FailureReason
from .events import Event

if TYPE_CHECKING:
    from .dlq import DeadLetterQueue
    from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

# Type alias for event handlers (sync, or returning an awaitable)
EventHandler = Callable[[Event], Any] | Callable[[Event], Awaitable[Any]]
Unsubscribe = Callable[[], bool]

CATCH_ALL = "*"
NAMESPACE_WILDCARD = ".*"


class PatternError(ValueError):
    """Raised when a subscription pattern is not valid."""

    def __init__(self, message: str, pattern: str | None = None):
        self.pattern = pattern
        super().__init__(message)


def validate_pattern(pattern: str) -> str:
    """
    Check a subscription pattern against the pattern grammar.

    Returns:
        The pattern unchanged

    Raises:
        PatternError: If the pattern is empty or uses "*" outside a
            catch-all or trailing namespace wildcard
    """
    if not isinstance(pattern, str) or not pattern:
        raise PatternError("Pattern must be a non-empty string", pattern)
    if pattern == CATCH_ALL:
        return pattern
    if pattern.endswith(NAMESPACE_WILDCARD):
        namespace = pattern[: -len(NAMESPACE_WILDCARD)]
        if namespace and "*" not in namespace:
            return pattern
    elif "*" not in pattern:
        return pattern
    raise PatternError(
        f"Pattern '{pattern}' must be '*', '{{namespace}}.*' or an exact event name",
        pattern,
    )


def match_pattern(pattern: str, event_name: str) -> bool:
    """Check whether ``event_name`` matches a (valid) subscription pattern."""
    if pattern == CATCH_ALL:
        return True
    if pattern.endswith(NAMESPACE_WILDCARD):
        return event_name.startswith(pattern[:-1])
    return pattern == event_name


def _handler_name(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None) or type(handler).__name__


@dataclass
class Subscription:
    """
    A (pattern, handler) registration.

    Attributes:
        pattern: Subscription pattern (see module docstring for the grammar)
        handler: Function to call when a matching event is published
        active: Whether the subscription still receives events
        metadata: Optional metadata for the subscription
        subscription_id: Unique identifier for this registration
    """

    pattern: str
    handler: EventHandler
    active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    subscription_id: str = field(
        default_factory=lambda: f"sub_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
    )

    @property
    def handler_name(self) -> str:
        return _handler_name(self.handler)

    def matches(self, event_name: str) -> bool:
        """Check if this active subscription matches ``event_name``."""
        return self.active and match_pattern(self.pattern, event_name)


HandlerErrorCallback = Callable[[Event, Subscription, BaseException], None]


class EventBus:
    """
    Synchronous publish/subscribe bus with namespace wildcards.

    Features:
    - Exact, namespace-wildcard and catch-all subscriptions
    - Registration-order delivery
    - Per-handler error isolation with logging, metrics and DLQ capture
    - Fire-and-forget scheduling of handlers that return awaitables
    """

    def __init__(
        self,
        metrics: MetricsCollector | None = None,
        dead_letter_queue: DeadLetterQueue | None = None,
        on_handler_error: HandlerErrorCallback | None = None,
    ):
        """
        Initialize the Event Bus.

        Args:
            metrics: Optional MetricsCollector for delivery metrics
            dead_letter_queue: Optional DLQ capturing failed deliveries
            on_handler_error: Optional callback invoked with
                (event, subscription, exception) for every isolated failure
        """
        self._metrics = metrics
        self._dlq = dead_letter_queue
        self._on_handler_error = on_handler_error

        # Guards the subscription list; dispatch works on a snapshot
        self._subscription_lock = threading.RLock()
        self.subscriptions: list[Subscription] = []

        # Tasks scheduled for handlers that returned awaitables
        self._pending_tasks: set[asyncio.Future[Any]] = set()
        self._tasks_lock = threading.Lock()

    def on(
        self,
        pattern: str,
        handler: EventHandler,
        metadata: dict[str, Any] | None = None,
    ) -> Unsubscribe:
        """
        Subscribe ``handler`` to events matching ``pattern``.

        Args:
            pattern: "*", "{namespace}.*" or an exact event name
            handler: Callable receiving each matching event
            metadata: Optional metadata for the subscription

        Returns:
            An idempotent unsubscribe function; it returns True the first time
            it removes the registration and False afterwards

        Raises:
            PatternError: If the pattern is not valid
            TypeError: If handler is not callable
        """
        validate_pattern(pattern)
        if not callable(handler):
            raise TypeError("handler must be callable")

        subscription = Subscription(pattern=pattern, handler=handler, metadata=metadata or {})

        with self._subscription_lock:
            self.subscriptions.append(subscription)
            count = len(self.subscriptions)

        if self._metrics:
            self._metrics.update_subscription_count(count)

        logger.debug(
            "Subscription registered",
            extra={"subscription_id": subscription.subscription_id, "pattern": pattern},
        )

        def unsubscribe() -> bool:
            return self.unsubscribe(subscription.subscription_id)

        return unsubscribe

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a registration by subscription ID.

        Returns:
            True if the subscription was found and removed
        """
        with self._subscription_lock:
            removed = [s for s in self.subscriptions if s.subscription_id == subscription_id]
            if not removed:
                return False
            for sub in removed:
                sub.active = False
            self.subscriptions = [
                s for s in self.subscriptions if s.subscription_id != subscription_id
            ]
            count = len(self.subscriptions)

        if self._metrics:
            self._metrics.update_subscription_count(count)
        return True

    def off(self, pattern: str, handler: EventHandler) -> int:
        """
        Remove every registration of ``handler`` under ``pattern``.

        Returns:
            Number of registrations removed
        """
        with self._subscription_lock:
            matching = [
                s.subscription_id
                for s in self.subscriptions
                if s.pattern == pattern and s.handler == handler
            ]
        return sum(1 for sub_id in matching if self.unsubscribe(sub_id))

    def get_subscriptions(self) -> list[Subscription]:
        """Return a copy of the current subscriptions list."""
        with self._subscription_lock:
            return self.subscriptions.copy()

    def emit(self, event: Event) -> int:
        """
        Publish an event to every matching subscriber.

        Handlers run synchronously in registration order. A handler that
        raises is isolated: the failure is reported and delivery continues.

        Args:
            event: Committed event to deliver

        Returns:
            Number of handlers invoked
        """
        with self._subscription_lock:
            matching = [sub for sub in self.subscriptions if sub.matches(event.name)]

        delivered = 0
        for sub in matching:
            # Skip handlers unsubscribed earlier in this same dispatch
            if not sub.active:
                continue
            self._deliver(event, sub)
            delivered += 1
        return delivered

    def _deliver(self, event: Event, subscription: Subscription) -> None:
        """Invoke one handler with metrics and error isolation."""
        handler_start = time.perf_counter()
        success = True

        try:
            result = subscription.handler(event)
            if inspect.isawaitable(result):
                self._schedule(result, event, subscription)
        except Exception as e:  # nosec - handler errors must not abort the fan-out
            success = False
            self._report_failure(event, subscription, e, FailureReason.HANDLER_ERROR)
        finally:
            if self._metrics:
                self._metrics.record_handler_execution(
                    event.name,
                    subscription.handler_name,
                    time.perf_counter() - handler_start,
                    success,
                )

    def _schedule(self, awaitable: Awaitable[Any], event: Event, subscription: Subscription) -> None:
        """
        Schedule an awaitable returned by a handler on the running loop.

        The bus does not wait for it. Without a running loop the awaitable
        cannot run and is discarded.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Handler returned an awaitable outside a running event loop; discarded",
                extra={"event_id": event.id, "handler_name": subscription.handler_name},
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        with self._tasks_lock:
            self._pending_tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, event, subscription))

    def _on_task_done(self, task: asyncio.Future[Any], event: Event, subscription: Subscription) -> None:
        with self._tasks_lock:
            self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._report_failure(event, subscription, error, FailureReason.HANDLER_ASYNC_ERROR)

    def _report_failure(
        self,
        event: Event,
        subscription: Subscription,
        error: BaseException,
        reason: FailureReason,
    ) -> None:
        """Log an isolated handler failure, capture it in the DLQ and notify."""
        logger.warning(
            f"Handler {subscription.handler_name} failed for event {event.name}: {error}",
            exc_info=error,
            extra={
                "event_id": event.id,
                "event_name": event.name,
                "subscription_id": subscription.subscription_id,
                "handler_name": subscription.handler_name,
            },
        )

        if self._dlq is not None:
            self._dlq.add(
                event=event,
                reason=reason,
                error=str(error),
                handler_name=subscription.handler_name,
                handler=subscription.handler,
                metadata={"subscription_id": subscription.subscription_id},
            )

        if self._on_handler_error is not None:
            try:
                self._on_handler_error(event, subscription, error)
            except Exception as callback_error:  # nosec - reporting must not abort the fan-out
                logger.warning(f"on_handler_error callback failed: {callback_error}")

    def get_pending_count(self) -> int:
        """Number of scheduled handler tasks not yet finished."""
        with self._tasks_lock:
            return len(self._pending_tasks)

    async def wait_for_pending(self, timeout: float = 30.0) -> int:
        """
        Wait for scheduled handler tasks to complete.

        Args:
            timeout: Maximum time to wait; unfinished tasks are cancelled

        Returns:
            Number of tasks that completed
        """
        with self._tasks_lock:
            tasks = list(self._pending_tasks)

        if not tasks:
            return 0

        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        return len(done)

    def get_stats(self) -> dict[str, Any]:
        """
        Get bus statistics.

        Returns:
            Dictionary with subscription counts, patterns and pending tasks
        """
        with self._subscription_lock:
            stats: dict[str, Any] = {
                "total_subscriptions": len(self.subscriptions),
                "patterns_subscribed": sorted({s.pattern for s in self.subscriptions}),
            }
        stats["pending_async_tasks"] = self.get_pending_count()
        stats["dlq_enabled"] = self._dlq is not None
        if self._dlq is not None:
            stats["dlq"] = self._dlq.get_stats()
        return stats
