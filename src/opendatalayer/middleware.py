"""
Middleware pipeline - ordered, cancellable transformation chain.

Each middleware receives the event as transformed so far and a continuation
(``next``). Calling ``next(event)`` hands a (possibly new) event to the rest
of the chain; not calling it cancels the event. The outcome of a run is an
explicit value: ``Continue(event)`` when the whole chain passed the event
through, ``Stop`` when some stage halted it.

The chain is synchronous. A continuation must be called before the stage
that received it returns; calling it later, calling it twice, or returning an
awaitable raises MiddlewareError. Exceptions raised by a middleware propagate
to the caller of ``execute``.

Usage:
    from opendatalayer.middleware import MiddlewarePipeline, STOP

    pipeline = MiddlewarePipeline()

    def add_channel(event, next):
        return next(event.evolve(data={**(event.data or {}), "channel": "web"}))

    def drop_internal(event, next):
        if event.name.startswith("internal."):
            return STOP
        return next()

    pipeline.use(add_channel)
    pipeline.use(drop_internal)

    result = pipeline.execute(event, on_complete=store)
    if result.passed:
        print(result.event)

Middleware may also skip the continuation entirely and return
``Continue(new_event)``, which advances the chain exactly like
``next(new_event)``.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .events import Event

logger = logging.getLogger(__name__)


class MiddlewareError(RuntimeError):
    """Raised when a middleware breaks the synchronous chain contract."""


@dataclass(frozen=True, slots=True)
class Continue:
    """The chain passed the event through; ``event`` is the final version."""

    event: Event

    @property
    def passed(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Stop:
    """A stage halted the chain."""

    reason: str | None = None

    @property
    def passed(self) -> bool:
        return False


STOP = Stop()

PipelineResult = Continue | Stop
Next = Callable[..., PipelineResult]
Middleware = Callable[[Event, Next], Any]


def _name(fn: Any) -> str:
    return getattr(fn, "__qualname__", None) or getattr(fn, "__name__", None) or type(fn).__name__


class _Stage:
    """Continuation bookkeeping for a single middleware invocation."""

    __slots__ = ("called", "returned", "outcome")

    def __init__(self) -> None:
        self.called = False
        self.returned = False
        self.outcome: PipelineResult | None = None


class MiddlewarePipeline:
    """
    Executes an ordered list of middleware functions as a pipeline.

    Membership is append-only; middleware run in registration order.
    """

    def __init__(self) -> None:
        self._middlewares: list[Middleware] = []
        self._lock = threading.Lock()

    def use(self, fn: Middleware) -> None:
        """
        Append a middleware to the pipeline.

        Raises:
            TypeError: If fn is not callable or is a coroutine function
        """
        if not callable(fn):
            raise TypeError("middleware must be callable")
        if inspect.iscoroutinefunction(fn):
            raise TypeError(f"middleware {_name(fn)} is a coroutine function; middleware must be synchronous")
        with self._lock:
            self._middlewares.append(fn)
        logger.debug(f"Middleware registered: {_name(fn)}")

    @property
    def middlewares(self) -> tuple[Middleware, ...]:
        with self._lock:
            return tuple(self._middlewares)

    def __len__(self) -> int:
        with self._lock:
            return len(self._middlewares)

    def execute(
        self,
        event: Event,
        on_complete: Callable[[Event], Any] | None = None,
    ) -> PipelineResult:
        """
        Run the pipeline for an event.

        Once every middleware has passed the event on, ``on_complete`` is
        invoked with the final event. If any middleware halts the chain,
        neither later middleware nor ``on_complete`` run.

        Args:
            event: Event to process
            on_complete: Optional callback receiving the final event

        Returns:
            Continue(final_event) or a Stop

        Raises:
            MiddlewareError: If a middleware breaks the chain contract
        """
        chain = self.middlewares
        return self._run(chain, 0, event, event, on_complete)

    def _run(
        self,
        chain: tuple[Middleware, ...],
        index: int,
        current: Event,
        original: Event,
        on_complete: Callable[[Event], Any] | None,
    ) -> PipelineResult:
        if index == len(chain):
            if on_complete is not None:
                on_complete(current)
            return Continue(current)

        fn = chain[index]
        stage = _Stage()

        def next_(event: Event | None = None) -> PipelineResult:
            if stage.returned:
                raise MiddlewareError(
                    f"Middleware {_name(fn)} called its continuation after returning; "
                    "continuations must be called synchronously"
                )
            if stage.called:
                raise MiddlewareError(f"Middleware {_name(fn)} called its continuation more than once")
            stage.called = True
            forwarded = current if event is None else self._check(fn, event, original)
            stage.outcome = self._run(chain, index + 1, forwarded, original, on_complete)
            return stage.outcome

        try:
            returned = fn(current, next_)
        finally:
            stage.returned = True

        if inspect.isawaitable(returned):
            if inspect.iscoroutine(returned):
                returned.close()
            raise MiddlewareError(f"Middleware {_name(fn)} returned an awaitable; middleware must be synchronous")

        if stage.called:
            # Downstream failure swallowed by this stage: the chain never completed
            return stage.outcome if stage.outcome is not None else STOP

        if isinstance(returned, Continue):
            forwarded = self._check(fn, returned.event, original)
            return self._run(chain, index + 1, forwarded, original, on_complete)

        result = returned if isinstance(returned, Stop) else STOP
        logger.debug(
            f"Middleware {_name(fn)} halted event {current.name}",
            extra={"event_id": current.id, "reason": result.reason},
        )
        return result

    @staticmethod
    def _check(fn: Middleware, event: Any, original: Event) -> Event:
        """Validate an event handed on by a middleware."""
        if not isinstance(event, Event):
            raise MiddlewareError(
                f"Middleware {_name(fn)} passed {type(event).__name__} to its continuation, expected Event"
            )
        for attr in ("id", "timestamp", "spec_version"):
            if getattr(event, attr) != getattr(original, attr):
                raise MiddlewareError(f"Middleware {_name(fn)} changed the event's {attr}")
        return event
