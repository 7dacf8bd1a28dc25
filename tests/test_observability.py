"""
Observability tests: validation, metrics and tracing.
"""

from __future__ import annotations

import pytest

from opendatalayer import (
    CallbackMetrics,
    DataLayer,
    EventValidator,
    InMemoryMetrics,
    MetricsCollector,
    NoopMetrics,
    TimingContext,
    ValidationError,
    add_event_to_span,
    extract_action,
    extract_namespace,
    is_otel_available,
    is_valid_event_name,
    set_span_attribute,
    traced,
)
from opendatalayer import telemetry
from opendatalayer.metrics import PrometheusMetrics, is_prometheus_available


class TestEventValidator:
    """Test the {namespace}.{action} convention."""

    @pytest.mark.parametrize(
        "name",
        ["page.view", "ecommerce.cart_add", "consent.preferencesUpdated", "media.video.play"],
    )
    def test_valid_names(self, name):
        assert EventValidator().validate_event_name(name).valid
        assert is_valid_event_name(name)

    @pytest.mark.parametrize("name", ["pageview", "Page.view", "page.", ".view", "page..view", "page.view!"])
    def test_invalid_names(self, name):
        result = EventValidator().validate_event_name(name)
        assert not result.valid
        assert result.errors

    def test_strict_mode_raises(self):
        with pytest.raises(ValidationError) as exc_info:
            EventValidator(strict=True).validate_event_name("pageview")
        assert exc_info.value.event_name == "pageview"

    def test_allowed_namespaces(self):
        validator = EventValidator(allowed_namespaces={"page", "user"})
        assert validator.validate_event_name("page.view").valid
        assert not validator.validate_event_name("ecommerce.purchase").valid

    def test_required_fields(self):
        validator = EventValidator()
        assert validator.validate_data({"orderId": "A-1"}, {"orderId"}).valid
        assert not validator.validate_data({}, {"orderId"}).valid
        assert not validator.validate_data(None, {"orderId"}).valid

    def test_custom_dimensions(self):
        validator = EventValidator()
        assert validator.validate_custom_dimensions({"tier": "gold", "seats": 3, "beta": True}).valid
        assert not validator.validate_custom_dimensions({"nested": {"a": 1}}).valid
        assert not validator.validate_custom_dimensions({"missing": None}).valid

    def test_require_source(self):
        validator = EventValidator(require_source=True)
        assert not validator.validate_source(None).valid
        assert validator.validate_source({"name": "web", "version": "1"}).valid

    def test_combined_validate_collects_errors(self):
        result = EventValidator().validate("pageview", data={}, required_fields={"path"})
        assert len(result.errors) == 2

    def test_name_helpers(self):
        assert extract_namespace("media.video.play") == "media"
        assert extract_action("media.video.play") == "video.play"
        assert extract_namespace("heartbeat") is None
        assert extract_action("heartbeat") is None

    def test_data_layer_custom_validator(self):
        layer = DataLayer(
            validate_events=True,
            validator=EventValidator(strict=True, allowed_namespaces={"page"}),
        )
        layer.emit("page.view")
        with pytest.raises(ValidationError):
            layer.emit("user.signed_in")


class TestMetrics:
    """Test metrics backends and the DataLayer wiring."""

    def test_in_memory_backend(self):
        backend = InMemoryMetrics()
        backend.increment("hits", tags={"b": "2", "a": "1"})
        backend.increment("hits", tags={"a": "1", "b": "2"})
        backend.gauge("size", 3)
        backend.timing("latency", 1.5)

        assert backend.get_counter("hits", {"a": "1", "b": "2"}) == 2
        assert backend.get_gauge("size") == 3
        assert backend.get_timing_values("latency") == [1.5]

        backend.reset()
        assert backend.get_counter("hits", {"a": "1", "b": "2"}) == 0

    def test_callback_backend(self):
        calls = []
        backend = CallbackMetrics(lambda kind, name, value, tags: calls.append((kind, name, value)))
        MetricsCollector(backend=backend).update_history_size(4)
        assert calls == [("gauge", "odl_history_size", 4.0)]

    def test_noop_snapshot(self):
        assert MetricsCollector(backend=NoopMetrics()).get_snapshot() == {"backend": "NoopMetrics"}

    def test_data_layer_records_commits_and_cancellations(self, metrics):
        layer = DataLayer(metrics=metrics, source={"name": "web", "version": "1.0.0"})
        layer.use(lambda event, next: None if event.name == "t.drop" else next())

        layer.emit("t.keep")
        layer.emit("t.keep")
        layer.emit("t.drop")

        snapshot = metrics.get_snapshot()
        assert snapshot["events_committed"] == {"t.keep": 2}
        assert snapshot["total_events_cancelled"] == 1

        backend = metrics.backend
        assert backend.get_gauge("odl_history_size") == 2
        tags = {"event_name": "t.keep", "source": "web"}
        assert len(backend.get_timing_values("odl_emit_latency_ms", tags)) == 2

    def test_subscription_gauge(self, metrics):
        layer = DataLayer(metrics=metrics)
        unsubscribe = layer.on("*", lambda e: None)
        assert metrics.backend.get_gauge("odl_subscriptions") == 1
        unsubscribe()
        assert metrics.backend.get_gauge("odl_subscriptions") == 0

    def test_reset_zeroes_history_gauge(self, metrics):
        layer = DataLayer(metrics=metrics)
        layer.emit("t.test")
        layer.reset()
        assert metrics.backend.get_gauge("odl_history_size") == 0

    def test_timing_context(self):
        with TimingContext() as timing:
            sum(range(1000))
        assert timing.elapsed_ms >= 0
        assert timing.elapsed_seconds == timing.elapsed_ms / 1000

    def test_prometheus_backend(self):
        if not is_prometheus_available():
            pytest.skip("prometheus_client not installed")
        from prometheus_client import CollectorRegistry

        registry = CollectorRegistry()
        layer = DataLayer(metrics=MetricsCollector(backend=PrometheusMetrics(prefix="app", registry=registry)))
        layer.emit("page.view")

        value = registry.get_sample_value("app_odl_events_committed_total", {"event_name": "page.view"})
        assert value == 1.0

    def test_prometheus_default_names_carry_one_prefix(self):
        if not is_prometheus_available():
            pytest.skip("prometheus_client not installed")
        from prometheus_client import CollectorRegistry

        registry = CollectorRegistry()
        layer = DataLayer(metrics=MetricsCollector(backend=PrometheusMetrics(registry=registry)))
        layer.emit("page.view")

        assert registry.get_sample_value("odl_events_committed_total", {"event_name": "page.view"}) == 1.0
        assert registry.get_sample_value("odl_odl_events_committed_total", {"event_name": "page.view"}) is None


class RecordingSpan:
    """Stand-in for a recording OpenTelemetry span."""

    def __init__(self):
        self.attributes = {}
        self.events = []

    def is_recording(self):
        return True

    def set_attribute(self, key, value):
        self.attributes[key] = value

    def add_event(self, name, attributes=None):
        self.events.append((name, attributes))


class TestTelemetry:
    """Tracing degrades gracefully and never changes results."""

    @pytest.fixture
    def span(self, monkeypatch):
        span = RecordingSpan()
        monkeypatch.setattr(telemetry, "get_current_span", lambda: span)
        return span

    def test_traced_sync_function(self):
        @traced("test.sync")
        def add(a, b):
            return a + b

        assert add(2, 3) == 5

    def test_traced_propagates_exceptions(self):
        @traced("test.failing")
        def failing():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            failing()

    def test_emit_works_with_or_without_otel(self, data_layer):
        assert isinstance(is_otel_available(), bool)
        assert data_layer.emit("page.view").name == "page.view"

    def test_emit_annotates_current_span(self, data_layer, span):
        event = data_layer.emit("page.view")

        assert span.attributes == {"odl.event.name": "page.view", "odl.source": "test-suite"}
        assert span.events == [("odl.event.committed", {"odl.event.name": "page.view", "odl.event.id": event.id})]

    def test_cancellation_recorded_on_span(self, span):
        layer = DataLayer()
        layer.use(lambda event, next: None)

        event = layer.emit("page.view")

        assert span.attributes == {"odl.event.name": "page.view"}
        assert span.events == [("odl.event.cancelled", {"odl.event.name": "page.view", "odl.event.id": event.id})]

    def test_span_helpers_skip_non_recording_span(self, monkeypatch):
        span = RecordingSpan()
        span.is_recording = lambda: False
        monkeypatch.setattr(telemetry, "get_current_span", lambda: span)

        set_span_attribute("odl.event.name", "page.view")
        add_event_to_span("odl.event.committed")

        assert span.attributes == {}
        assert span.events == []
