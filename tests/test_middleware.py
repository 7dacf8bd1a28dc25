"""
Middleware pipeline tests.

Covers registration-order transformation, cancellation, explicit results and
the synchronous continuation contract.
"""

from __future__ import annotations

import pytest

from opendatalayer import STOP, Continue, Event, MiddlewareError, MiddlewarePipeline, Stop


@pytest.fixture
def pipeline():
    return MiddlewarePipeline()


def tag(label):
    def middleware(event, next):
        seen = list((event.data or {}).get("seen", []))
        return next(event.evolve(data={**(event.data or {}), "seen": seen + [label]}))

    middleware.__name__ = f"tag_{label}"
    return middleware


class TestExecution:
    """Test the happy path."""

    def test_empty_pipeline_passes_event_through(self, pipeline):
        event = Event(name="t.test")
        completed = []

        result = pipeline.execute(event, on_complete=completed.append)

        assert result == Continue(event)
        assert completed == [event]

    def test_registration_order_transformation(self, pipeline):
        pipeline.use(tag("M1"))
        pipeline.use(tag("M2"))

        result = pipeline.execute(Event(name="t.test", data={}))

        assert result.passed
        assert result.event.data["seen"] == ["M1", "M2"]

    def test_next_without_argument_keeps_event(self, pipeline):
        pipeline.use(lambda event, next: next())
        event = Event(name="t.test")
        assert pipeline.execute(event).event is event

    def test_returning_continue_advances_chain(self, pipeline):
        pipeline.use(lambda event, next: Continue(event.evolve(data={"a": 1})))
        pipeline.use(tag("M2"))

        result = pipeline.execute(Event(name="t.test"))

        assert result.event.data == {"a": 1, "seen": ["M2"]}

    def test_on_complete_receives_final_event_once(self, pipeline):
        pipeline.use(tag("M1"))
        completed = []

        result = pipeline.execute(Event(name="t.test"), on_complete=completed.append)

        assert completed == [result.event]

    def test_len_and_middlewares(self, pipeline):
        first, second = tag("a"), tag("b")
        pipeline.use(first)
        pipeline.use(second)
        assert len(pipeline) == 2
        assert pipeline.middlewares == (first, second)


class TestCancellation:
    """A stage that withholds the continuation halts the chain."""

    def test_not_calling_next_stops(self, pipeline):
        later = []
        completed = []
        pipeline.use(lambda event, next: None)
        pipeline.use(lambda event, next: later.append(event) or next())

        result = pipeline.execute(Event(name="t.test"), on_complete=completed.append)

        assert isinstance(result, Stop)
        assert not result.passed
        assert later == []
        assert completed == []

    def test_returning_stop_with_reason(self, pipeline):
        pipeline.use(lambda event, next: Stop("consent denied"))
        result = pipeline.execute(Event(name="t.test"))
        assert result == Stop("consent denied")

    def test_returning_stop_singleton(self, pipeline):
        pipeline.use(lambda event, next: STOP)
        assert pipeline.execute(Event(name="t.test")) is STOP

    def test_downstream_stop_propagates_upstream(self, pipeline):
        upstream_saw = []

        def outer(event, next):
            result = next()
            upstream_saw.append(result)
            return result

        pipeline.use(outer)
        pipeline.use(lambda event, next: STOP)

        result = pipeline.execute(Event(name="t.test"))

        assert result is STOP
        assert upstream_saw == [STOP]


class TestContract:
    """Contract violations raise MiddlewareError."""

    def test_deferred_continuation(self, pipeline):
        saved = []

        def defer(event, next):
            saved.append(next)

        pipeline.use(defer)
        result = pipeline.execute(Event(name="t.test"))

        assert isinstance(result, Stop)
        with pytest.raises(MiddlewareError, match="after returning"):
            saved[0]()

    def test_double_continuation(self, pipeline):
        def twice(event, next):
            next()
            return next()

        pipeline.use(twice)
        with pytest.raises(MiddlewareError, match="more than once"):
            pipeline.execute(Event(name="t.test"))

    def test_non_event_passed_on(self, pipeline):
        pipeline.use(lambda event, next: next({"event": "t.test"}))
        with pytest.raises(MiddlewareError, match="expected Event"):
            pipeline.execute(Event(name="t.test"))

    @pytest.mark.parametrize("field,value", [("id", "other"), ("timestamp", "2000-01-01T00:00:00.000Z")])
    def test_identity_fields_are_fixed(self, pipeline, field, value):
        pipeline.use(lambda event, next: next(event.evolve(**{field: value})))
        with pytest.raises(MiddlewareError, match=field):
            pipeline.execute(Event(name="t.test"))

    def test_coroutine_middleware_rejected(self, pipeline):
        async def async_middleware(event, next):
            return next()

        with pytest.raises(TypeError):
            pipeline.use(async_middleware)
        assert len(pipeline) == 0

    def test_awaitable_return_rejected(self, pipeline):
        async def later():
            return None

        pipeline.use(lambda event, next: later())
        with pytest.raises(MiddlewareError, match="awaitable"):
            pipeline.execute(Event(name="t.test"))

    def test_non_callable_rejected(self, pipeline):
        with pytest.raises(TypeError):
            pipeline.use("not callable")

    def test_middleware_exception_propagates(self, pipeline):
        def failing(event, next):
            raise KeyError("broken")

        pipeline.use(failing)
        with pytest.raises(KeyError):
            pipeline.execute(Event(name="t.test"))

    def test_swallowed_downstream_failure_does_not_complete(self, pipeline):
        completed = []

        def swallow(event, next):
            try:
                return next()
            except KeyError:
                return None

        def failing(event, next):
            raise KeyError("broken")

        pipeline.use(swallow)
        pipeline.use(failing)

        result = pipeline.execute(Event(name="t.test"), on_complete=completed.append)

        assert result is STOP
        assert completed == []
