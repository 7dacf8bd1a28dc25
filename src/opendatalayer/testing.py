"""
Test helpers for code that emits data layer events.

Usage:
    from opendatalayer import DataLayer
    from opendatalayer.testing import EventSpy, create_full_context, create_test_event

    layer = DataLayer()
    spy = EventSpy().attach(layer)

    checkout(layer)

    assert spy.has_event("ecommerce.purchase")
    assert spy.get_last_event().data["total"] == 42.0

    event = create_test_event(name="page.view", context=create_full_context())
"""

from __future__ import annotations

import threading
import uuid
from typing import Any

from .bus import Unsubscribe, match_pattern, validate_pattern
from .events import Event

TEST_TIMESTAMP = "2024-01-15T10:30:00.000Z"


class EventSpy:
    """
    Records committed events delivered to it.

    Attach it to anything exposing ``on(pattern, handler)``: an EventBus, a
    DataLayer or an OpenDataLayer. The spy can also be used directly as a
    handler via :meth:`handler`.
    """

    def __init__(self) -> None:
        self._events: list[Event] = []
        self._lock = threading.Lock()
        self._unsubscribe: Unsubscribe | None = None

    def attach(self, source: Any, pattern: str = "*") -> EventSpy:
        """Subscribe to ``source``; returns the spy for chaining."""
        self.disconnect()
        self._unsubscribe = source.on(pattern, self.record)
        return self

    def record(self, event: Event) -> None:
        with self._lock:
            self._events.append(event)

    def handler(self):
        """Return a handler function feeding this spy."""
        return self.record

    def get_events(self) -> tuple[Event, ...]:
        with self._lock:
            return tuple(self._events)

    def get_by_name(self, name: str) -> list[Event]:
        return [event for event in self.get_events() if event.name == name]

    def get_by_pattern(self, pattern: str) -> list[Event]:
        """
        Filter recorded events with a subscription pattern.

        Uses the bus grammar ("*", "ns.*" or an exact name), so a query
        matches exactly what a subscription with the same pattern receives.
        Segment globs such as "page.*.view" or "**" raise PatternError.
        """
        validate_pattern(pattern)
        return [event for event in self.get_events() if match_pattern(pattern, event.name)]

    def get_last_event(self) -> Event | None:
        with self._lock:
            return self._events[-1] if self._events else None

    def has_event(self, name: str) -> bool:
        return any(event.name == name for event in self.get_events())

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events = []

    def disconnect(self) -> None:
        """Stop receiving events; recorded events are kept."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


def deterministic_uuid(seed: int = 0) -> str:
    """Return a reproducible UUID4-formatted id derived from ``seed``."""
    spread = (seed * 2654435761) & ((1 << 128) - 1)
    return str(uuid.UUID(int=spread, version=4))


def create_test_event(**overrides: Any) -> Event:
    """
    Build a minimal valid event with a fixed id and timestamp.

    Keyword arguments override Event fields (``name``, ``data``, ...).
    """
    fields: dict[str, Any] = {
        "name": "test.event",
        "id": deterministic_uuid(0),
        "timestamp": TEST_TIMESTAMP,
    }
    fields.update(overrides)
    return Event(**fields)


def create_page_context(**overrides: Any) -> dict[str, Any]:
    return {
        "url": "https://example.com/products/widget",
        "path": "/products/widget",
        "title": "Widget - Example Store",
        "referrer": "https://example.com/",
        **overrides,
    }


def create_user_context(**overrides: Any) -> dict[str, Any]:
    return {
        "id": "user-12345",
        "anonymousId": deterministic_uuid(10),
        "isAuthenticated": True,
        "traits": {"email": "test@example.com", "name": "Test User", "plan": "premium"},
        **overrides,
    }


def create_consent_context(**overrides: Any) -> dict[str, Any]:
    """Consent context with analytics, marketing and functional purposes granted."""
    return {
        "status": "granted",
        "purposes": {
            "analytics": True,
            "marketing": True,
            "functional": True,
            "personalization": False,
        },
        "updatedAt": "2024-01-15T10:00:00.000Z",
        **overrides,
    }


def create_session_context(**overrides: Any) -> dict[str, Any]:
    return {
        "id": deterministic_uuid(20),
        "isNew": False,
        "count": 5,
        "startedAt": "2024-01-15T10:00:00.000Z",
        **overrides,
    }


def create_full_context(**overrides: Any) -> dict[str, Any]:
    """Context with page, user, consent and session populated."""
    return {
        "page": create_page_context(),
        "user": create_user_context(),
        "consent": create_consent_context(),
        "session": create_session_context(),
        **overrides,
    }
