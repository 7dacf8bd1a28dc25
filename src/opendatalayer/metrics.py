"""
Metrics collection for the data layer.

Provides hooks for emitting metrics about event commits, cancellations and
subscriber deliveries. Supports multiple backends: callback-based, in-memory
and Prometheus.

Usage:
    from opendatalayer import DataLayer
    from opendatalayer.metrics import InMemoryMetrics, MetricsCollector

    collector = MetricsCollector(backend=InMemoryMetrics())
    layer = DataLayer(metrics=collector)

    # Or with Prometheus (if prometheus_client installed)
    from opendatalayer.metrics import PrometheusMetrics

    layer = DataLayer(metrics=MetricsCollector(backend=PrometheusMetrics()))
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class MetricTags:
    """Common tags for metrics."""

    event_name: str | None = None
    source: str | None = None
    handler_name: str | None = None
    status: str | None = None  # "success", "error"

    def to_dict(self) -> dict[str, str]:
        """Convert to dict, excluding None values."""
        return {k: v for k, v in vars(self).items() if v is not None}


class MetricsBackend(ABC):
    """Abstract base class for metrics backends."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        """Increment a counter."""

    @abstractmethod
    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Set a gauge value."""

    @abstractmethod
    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        """Record a histogram value."""

    @abstractmethod
    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        """Record a timing in milliseconds."""


class NoopMetrics(MetricsBackend):
    """No-op metrics backend (default when metrics disabled)."""

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        pass


class CallbackMetrics(MetricsBackend):
    """
    Callback-based metrics backend.

    Forwards every metric to a function, for custom metrics systems.

    Usage:
        def my_callback(metric_type, name, value, tags):
            print(f"{metric_type}: {name}={value}")

        metrics = CallbackMetrics(callback=my_callback)
    """

    def __init__(
        self,
        callback: Callable[[str, str, float, dict[str, str] | None], None],
    ):
        self.callback = callback

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.callback("counter", name, float(value), tags)

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.callback("gauge", name, value, tags)

    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.callback("histogram", name, value, tags)

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        self.callback("timing", name, value_ms, tags)


@dataclass
class InMemoryMetrics(MetricsBackend):
    """
    In-memory metrics backend for testing and debugging.

    Keys are ``name{tag=value,...}`` with tags sorted by name.
    """

    counters: dict[str, int] = field(default_factory=dict)
    gauges: dict[str, float] = field(default_factory=dict)
    histograms: dict[str, list[float]] = field(default_factory=dict)
    timings: dict[str, list[float]] = field(default_factory=dict)

    def _key(self, name: str, tags: dict[str, str] | None) -> str:
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}{{{tag_str}}}"

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        key = self._key(name, tags)
        self.counters[key] = self.counters.get(key, 0) + value

    def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.gauges[self._key(name, tags)] = value

    def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.histograms.setdefault(self._key(name, tags), []).append(value)

    def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
        self.timings.setdefault(self._key(name, tags), []).append(value_ms)

    def reset(self) -> None:
        """Clear all stored metrics."""
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()
        self.timings.clear()

    def get_counter(self, name: str, tags: dict[str, str] | None = None) -> int:
        return self.counters.get(self._key(name, tags), 0)

    def get_gauge(self, name: str, tags: dict[str, str] | None = None) -> float | None:
        return self.gauges.get(self._key(name, tags))

    def get_timing_values(self, name: str, tags: dict[str, str] | None = None) -> list[float]:
        return self.timings.get(self._key(name, tags), [])


class MetricsCollector:
    """
    Main metrics collector for the data layer.

    Wraps a backend and provides named metrics for data layer operations.
    """

    # Metric names
    EVENTS_COMMITTED = "events_committed_total"
    EVENTS_CANCELLED = "events_cancelled_total"
    HANDLER_EXECUTIONS = "handler_executions_total"
    HANDLER_ERRORS = "handler_errors_total"
    EMIT_LATENCY = "emit_latency_ms"
    HANDLER_LATENCY = "handler_latency_ms"
    SUBSCRIPTIONS = "subscriptions"
    HISTORY_SIZE = "history_size"

    def __init__(
        self,
        backend: MetricsBackend | None = None,
        prefix: str = "odl",
    ):
        """
        Initialize metrics collector.

        Args:
            backend: Metrics backend (defaults to NoopMetrics)
            prefix: Prefix for all metric names
        """
        self.backend = backend or NoopMetrics()
        self.prefix = prefix

    def _name(self, metric: str) -> str:
        return f"{self.prefix}_{metric}" if self.prefix else metric

    def record_event_committed(
        self,
        event_name: str,
        latency_seconds: float,
        source: str | None = None,
    ) -> None:
        """Record an event that passed the pipeline and was committed."""
        tags = MetricTags(event_name=event_name, source=source).to_dict()
        self.backend.increment(self._name(self.EVENTS_COMMITTED), tags=tags)
        self.backend.timing(self._name(self.EMIT_LATENCY), latency_seconds * 1000, tags=tags)

    def record_event_cancelled(self, event_name: str, source: str | None = None) -> None:
        """Record an event halted by middleware."""
        tags = MetricTags(event_name=event_name, source=source).to_dict()
        self.backend.increment(self._name(self.EVENTS_CANCELLED), tags=tags)

    def record_handler_execution(
        self,
        event_name: str,
        handler_name: str,
        latency_seconds: float,
        success: bool = True,
    ) -> None:
        """Record a subscriber delivery."""
        status = "success" if success else "error"
        tags = MetricTags(
            event_name=event_name,
            handler_name=handler_name,
            status=status,
        ).to_dict()

        self.backend.increment(self._name(self.HANDLER_EXECUTIONS), tags=tags)
        self.backend.timing(self._name(self.HANDLER_LATENCY), latency_seconds * 1000, tags=tags)

        if not success:
            self.backend.increment(self._name(self.HANDLER_ERRORS), tags=tags)

    def update_subscription_count(self, count: int) -> None:
        self.backend.gauge(self._name(self.SUBSCRIPTIONS), float(count))

    def update_history_size(self, count: int) -> None:
        self.backend.gauge(self._name(self.HISTORY_SIZE), float(count))

    def get_snapshot(self) -> dict[str, Any]:
        """
        Get a snapshot of current metrics.

        Only meaningful with the InMemoryMetrics backend.

        Returns:
            Dictionary with metrics summary
        """
        if not isinstance(self.backend, InMemoryMetrics):
            return {"backend": type(self.backend).__name__}

        committed: dict[str, int] = {}
        cancelled: dict[str, int] = {}
        handler_stats: dict[str, dict[str, int]] = {}

        committed_prefix = self._name(self.EVENTS_COMMITTED)
        cancelled_prefix = self._name(self.EVENTS_CANCELLED)
        handler_prefix = self._name(self.HANDLER_EXECUTIONS)

        for key, value in self.backend.counters.items():
            if key.startswith(committed_prefix):
                event_name = self._extract_tag(key, "event_name")
                if event_name:
                    committed[event_name] = committed.get(event_name, 0) + value
            elif key.startswith(cancelled_prefix):
                event_name = self._extract_tag(key, "event_name")
                if event_name:
                    cancelled[event_name] = cancelled.get(event_name, 0) + value
            elif key.startswith(handler_prefix):
                handler_name = self._extract_tag(key, "handler_name")
                if not handler_name:
                    continue
                stats = handler_stats.setdefault(
                    handler_name, {"total_calls": 0, "success_count": 0, "failure_count": 0}
                )
                stats["total_calls"] += value
                if self._extract_tag(key, "status") == "success":
                    stats["success_count"] += value
                else:
                    stats["failure_count"] += value

        return {
            "events_committed": committed,
            "events_cancelled": cancelled,
            "total_events_committed": sum(committed.values()),
            "total_events_cancelled": sum(cancelled.values()),
            "handler_stats": handler_stats,
        }

    def _extract_tag(self, key: str, tag_name: str) -> str | None:
        """Extract a tag value from a metric key."""
        # Keys look like: prefix_metric{tag1=val1,tag2=val2}
        if "{" not in key:
            return None
        tag_part = key.split("{", 1)[1].rstrip("}")
        for pair in tag_part.split(","):
            if "=" in pair:
                name, value = pair.split("=", 1)
                if name == tag_name:
                    return value
        return None


class TimingContext:
    """Context manager for timing operations."""

    def __init__(self):
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    @property
    def elapsed_seconds(self) -> float:
        return self.elapsed_ms / 1000

    def __enter__(self) -> TimingContext:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000


# Optional Prometheus integration
try:
    from prometheus_client import Counter, Gauge, Histogram

    class PrometheusMetrics(MetricsBackend):
        """
        Prometheus metrics backend.

        Requires prometheus_client to be installed. Metric names already carry
        the collector prefix; ``prefix`` adds an application namespace on top.
        """

        def __init__(self, prefix: str = "", registry: Any = None):
            self.prefix = prefix
            self.registry = registry
            self._counters: dict[str, Counter] = {}
            self._gauges: dict[str, Gauge] = {}
            self._histograms: dict[str, Histogram] = {}

        def _kwargs(self) -> dict[str, Any]:
            return {"registry": self.registry} if self.registry is not None else {}

        def _key(self, name: str) -> str:
            return f"{self.prefix}_{name}" if self.prefix else name

        def _get_counter(self, name: str, labels: list[str]) -> Counter:
            key = self._key(name)
            if key not in self._counters:
                self._counters[key] = Counter(key, f"{name} counter", labels, **self._kwargs())
            return self._counters[key]

        def _get_gauge(self, name: str, labels: list[str]) -> Gauge:
            key = self._key(name)
            if key not in self._gauges:
                self._gauges[key] = Gauge(key, f"{name} gauge", labels, **self._kwargs())
            return self._gauges[key]

        def _get_histogram(self, name: str, labels: list[str]) -> Histogram:
            key = self._key(name)
            if key not in self._histograms:
                self._histograms[key] = Histogram(key, f"{name} histogram", labels, **self._kwargs())
            return self._histograms[key]

        def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
            counter = self._get_counter(name, sorted(tags) if tags else [])
            if tags:
                counter.labels(**tags).inc(value)
            else:
                counter.inc(value)

        def gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
            gauge = self._get_gauge(name, sorted(tags) if tags else [])
            if tags:
                gauge.labels(**tags).set(value)
            else:
                gauge.set(value)

        def histogram(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
            hist = self._get_histogram(name, sorted(tags) if tags else [])
            if tags:
                hist.labels(**tags).observe(value)
            else:
                hist.observe(value)

        def timing(self, name: str, value_ms: float, tags: dict[str, str] | None = None) -> None:
            # Prometheus convention is seconds
            self.histogram(name, value_ms / 1000, tags)

    PROMETHEUS_AVAILABLE = True
except ImportError:
    PROMETHEUS_AVAILABLE = False
    PrometheusMetrics = None  # type: ignore


def is_prometheus_available() -> bool:
    """Check if Prometheus client is available."""
    return PROMETHEUS_AVAILABLE
