#!/usr/bin/env python3
"""
DataLayer Benchmarks

Run with: python benchmarks/benchmark_throughput.py
(after ``pip install -e .``)

Measures:
- Emission throughput (events/sec) with and without subscribers
- Middleware chain overhead
- Pattern matching across mixed subscriptions
- Impact of context size on snapshots
- Metrics, DLQ and persistence overhead
"""

import gc
import statistics
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from opendatalayer import (
    DataLayer,
    DeadLetterQueue,
    Event,
    InMemoryMetrics,
    MetricsCollector,
    OpenDataLayer,
    PersistencePlugin,
)

TARGET_EVENTS_PER_SECOND = 10_000


@dataclass
class BenchmarkResult:
    """Result of a benchmark run."""

    name: str
    iterations: int
    total_time: float
    events_per_second: float
    avg_latency_ms: float
    p50_latency_ms: float
    p95_latency_ms: float
    p99_latency_ms: float


def percentile(data: list[float], p: float) -> float:
    """Calculate percentile."""
    if not data:
        return 0.0
    sorted_data = sorted(data)
    idx = int(len(sorted_data) * p / 100)
    return sorted_data[min(idx, len(sorted_data) - 1)]


def run(name: str, emit: Callable[[int], object], num_events: int) -> BenchmarkResult:
    """Time ``num_events`` calls of ``emit`` after a short warm up."""
    for i in range(100):
        emit(i)

    gc.collect()
    latencies: list[float] = []

    start = time.perf_counter()
    for i in range(num_events):
        emit_start = time.perf_counter()
        emit(i)
        latencies.append((time.perf_counter() - emit_start) * 1000)
    total_time = time.perf_counter() - start

    return BenchmarkResult(
        name=name,
        iterations=num_events,
        total_time=total_time,
        events_per_second=num_events / total_time,
        avg_latency_ms=statistics.mean(latencies),
        p50_latency_ms=percentile(latencies, 50),
        p95_latency_ms=percentile(latencies, 95),
        p99_latency_ms=percentile(latencies, 99),
    )


def benchmark_emit_throughput(num_events: int = 10000, with_handlers: bool = True) -> BenchmarkResult:
    layer = DataLayer()
    if with_handlers:
        layer.on("benchmark.*", lambda event: None)
    return run(
        f"emit_throughput(handlers={with_handlers})",
        lambda i: layer.emit("benchmark.event", {"iteration": i}),
        num_events,
    )


def benchmark_middleware_chain(num_events: int = 5000, depth: int = 5) -> BenchmarkResult:
    layer = DataLayer()

    def enrich(event, next):
        return next(event.evolve(data={**(event.data or {}), "enriched": True}))

    for _ in range(depth):
        layer.use(enrich)
    return run(
        f"middleware_chain(depth={depth})",
        lambda i: layer.emit("benchmark.event", {"i": i}),
        num_events,
    )


def benchmark_pattern_matching(num_events: int = 5000) -> BenchmarkResult:
    layer = DataLayer()

    def handler(event: Event) -> None:
        pass

    for pattern in ("user.*", "ecommerce.*", "page.view", "media.video.*", "*"):
        layer.on(pattern, handler)

    names = ["user.signed_in", "ecommerce.purchase", "page.view", "media.video.play", "other.event"]
    return run(
        "pattern_matching",
        lambda i: layer.emit(names[i % len(names)]),
        num_events,
    )


def benchmark_context_snapshot(num_events: int = 5000, context_keys: int = 50) -> BenchmarkResult:
    layer = DataLayer()
    for k in range(context_keys):
        layer.set_context(f"domain{k}", {"id": k, "tags": ["a", "b"], "nested": {"value": k}})
    return run(
        f"context_snapshot(keys={context_keys})",
        lambda i: layer.emit("benchmark.event"),
        num_events,
    )


def benchmark_with_metrics(num_events: int = 5000) -> BenchmarkResult:
    layer = DataLayer(metrics=MetricsCollector(backend=InMemoryMetrics()))
    layer.on("benchmark.*", lambda event: None)
    return run("with_metrics", lambda i: layer.emit("benchmark.event", {"i": i}), num_events)


def benchmark_with_dlq(num_events: int = 5000, failure_rate: float = 0.1) -> BenchmarkResult:
    layer = DataLayer(dead_letter_queue=DeadLetterQueue(max_size=1000))
    every = int(1 / failure_rate)

    def sometimes_fails(event: Event) -> None:
        if event.data["i"] % every == 0:
            raise RuntimeError("simulated failure")

    layer.on("benchmark.*", sometimes_fails)
    return run(
        f"with_dlq(failure_rate={failure_rate})",
        lambda i: layer.emit("benchmark.event", {"i": i}),
        num_events,
    )


def benchmark_with_persistence(num_events: int = 2000) -> BenchmarkResult:
    with tempfile.TemporaryDirectory() as tmp:
        odl = OpenDataLayer(plugins=[PersistencePlugin(Path(tmp) / "events.jsonl", max_events=500)])
        result = run("with_persistence(max_events=500)", lambda i: odl.track("benchmark.event", {"i": i}), num_events)
        odl.destroy()
    return result


def print_result(result: BenchmarkResult) -> None:
    status = "✅" if result.events_per_second >= TARGET_EVENTS_PER_SECOND else "⚠️"
    print(f"\n{status} {result.name}")
    print(f"   Events/sec: {result.events_per_second:,.0f}")
    print(f"   Total time: {result.total_time:.3f}s for {result.iterations:,} events")
    print(
        f"   Latency (ms): avg={result.avg_latency_ms:.3f}, "
        f"p50={result.p50_latency_ms:.3f}, p95={result.p95_latency_ms:.3f}, "
        f"p99={result.p99_latency_ms:.3f}"
    )


def main():
    print("=" * 60)
    print("DataLayer Benchmarks")
    print("=" * 60)
    print(f"Target: {TARGET_EVENTS_PER_SECOND:,} events/sec")

    results = [
        benchmark_emit_throughput(with_handlers=False),
        benchmark_emit_throughput(with_handlers=True),
        benchmark_middleware_chain(),
        benchmark_pattern_matching(),
        benchmark_context_snapshot(),
        benchmark_with_metrics(),
        benchmark_with_dlq(),
        benchmark_with_persistence(),
    ]
    for result in results:
        print_result(result)

    passing = sum(1 for r in results if r.events_per_second >= TARGET_EVENTS_PER_SECOND)
    print("\n" + "=" * 60)
    print(f"Passing {TARGET_EVENTS_PER_SECOND:,}/sec target: {passing}/{len(results)}")


if __name__ == "__main__":
    main()
