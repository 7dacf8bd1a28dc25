"""
Pytest configuration for data layer tests.
"""

from __future__ import annotations

import contextlib

import pytest


@pytest.fixture
def data_layer():
    """Create a fresh DataLayer instance for testing."""
    from opendatalayer import DataLayer

    return DataLayer(source={"name": "test-suite", "version": "1.0.0"})


@pytest.fixture
def event_bus():
    """Create a fresh EventBus instance for testing."""
    from opendatalayer import EventBus

    return EventBus()


@pytest.fixture
def odl():
    """Create an OpenDataLayer and tear its plugins down afterwards."""
    from opendatalayer import OpenDataLayer

    layer = OpenDataLayer(source={"name": "test-suite", "version": "1.0.0"})
    yield layer
    # Cleanup
    with contextlib.suppress(Exception):
        layer.destroy()


@pytest.fixture
def metrics():
    """Create a MetricsCollector backed by InMemoryMetrics."""
    from opendatalayer import InMemoryMetrics, MetricsCollector

    return MetricsCollector(backend=InMemoryMetrics())

