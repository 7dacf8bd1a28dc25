"""
Event data models for the data layer.

This module defines the core Event dataclass - an immutable record of something
that happened in the application, enriched with the ambient context that was
active when it was created.

Event Naming Convention:
    Events use dot-namespaced names in {namespace}.{action} format:
    - page.view, page.virtual_view
    - user.signed_in, user.signed_out
    - ecommerce.purchase, ecommerce.cart_add

    Pattern subscriptions use wildcards:
    - "page.*" matches all page events
    - "*" matches all events (catch-all)

Wire Format:
    Events serialize to a JSON object with the required string fields
    ``event``, ``id``, ``timestamp`` and ``specVersion`` plus the optional
    ``context``, ``data``, ``customDimensions`` and ``source`` fields.
"""

from __future__ import annotations

import dataclasses
import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Format version of the event envelope, constant for a given build
SPEC_VERSION = "1.0.0"

Primitive = str | int | float | bool


class MalformedEventError(ValueError):
    """Raised when a serialized event record does not have the event shape."""


def generate_event_id() -> str:
    """Generate a globally unique event ID (UUID4 string)."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """
    Return the current UTC time as an ISO-8601 string.

    Millisecond precision with a trailing ``Z``, e.g. ``2024-11-15T08:30:00.123Z``.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass(frozen=True, slots=True)
class EventSource:
    """Identifies the integration that produced an event."""

    name: str
    version: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "version": self.version}

    @classmethod
    def coerce(cls, value: EventSource | Mapping[str, Any] | None) -> EventSource | None:
        """Accept an EventSource, a {"name", "version"} mapping, or None."""
        if value is None or isinstance(value, EventSource):
            return value
        if isinstance(value, Mapping):
            name = value.get("name")
            version = value.get("version")
            if isinstance(name, str) and isinstance(version, str):
                return cls(name=name, version=version)
        raise ValueError("source must have string 'name' and 'version' fields")


@dataclass(frozen=True, slots=True)
class Event:
    """
    Immutable event record.

    Events are never mutated once constructed. Middleware that wants to
    transform an event builds a new one with :meth:`evolve`; the identity
    fields (``id``, ``timestamp``, ``spec_version``) are fixed at creation.

    Freezing covers the fields, not their contents: ``context``, ``data`` and
    ``custom_dimensions`` are plain dicts shared by the history and every
    subscriber. Handlers must treat them as read-only and copy before
    changing anything. The context is a snapshot, so such changes never
    reach the context store or later events.

    Attributes:
        name: Dot-namespaced event name (e.g., "ecommerce.purchase")
        id: Unique identifier assigned at creation
        timestamp: ISO-8601 creation time
        spec_version: Event envelope format version
        context: Snapshot of the ambient context at creation time
        data: Optional event-specific payload
        custom_dimensions: Optional flat key/value tags
        source: Optional producing integration
    """

    name: str
    id: str = field(default_factory=generate_event_id)
    timestamp: str = field(default_factory=now_iso)
    spec_version: str = SPEC_VERSION
    context: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] | None = None
    custom_dimensions: dict[str, Primitive] | None = None
    source: EventSource | None = None

    @property
    def namespace(self) -> str:
        """Namespace part of the name (everything before the first dot)."""
        return self.name.split(".", 1)[0]

    @property
    def action(self) -> str | None:
        """Action part of the name (everything after the first dot)."""
        parts = self.name.split(".", 1)
        return parts[1] if len(parts) > 1 else None

    def evolve(self, **changes: Any) -> Event:
        """Return a copy of this event with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert event to its wire representation.

        Optional fields are omitted when absent.

        Returns:
            Dictionary in the external event shape
        """
        result: dict[str, Any] = {
            "event": self.name,
            "id": self.id,
            "timestamp": self.timestamp,
            "specVersion": self.spec_version,
            "context": self.context,
        }
        if self.data is not None:
            result["data"] = self.data
        if self.custom_dimensions is not None:
            result["customDimensions"] = self.custom_dimensions
        if self.source is not None:
            result["source"] = self.source.to_dict()
        return result

    def to_json(self) -> str:
        """
        Serialize event to a single JSON line.

        Returns:
            Compact JSON string (single line, no extra whitespace)
        """
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> Event:
        """
        Reconstruct an event from its wire representation.

        Args:
            record: Mapping in the external event shape

        Returns:
            Reconstructed Event object

        Raises:
            MalformedEventError: If required fields are missing or fields
                have the wrong type
        """
        if not isinstance(record, Mapping):
            raise MalformedEventError(f"Event record must be an object, got {type(record).__name__}")

        for key in ("event", "id", "timestamp", "specVersion"):
            if not isinstance(record.get(key), str):
                raise MalformedEventError(f"Event record field '{key}' must be a string")

        context = record.get("context", {})
        data = record.get("data")
        dimensions = record.get("customDimensions")
        if not isinstance(context, Mapping):
            raise MalformedEventError("Event record field 'context' must be an object")
        if data is not None and not isinstance(data, Mapping):
            raise MalformedEventError("Event record field 'data' must be an object")
        if dimensions is not None and (
            not isinstance(dimensions, Mapping)
            or not all(isinstance(v, (str, int, float, bool)) for v in dimensions.values())
        ):
            raise MalformedEventError("Event record field 'customDimensions' must be a flat object")

        try:
            source = EventSource.coerce(record.get("source"))
        except ValueError as e:
            raise MalformedEventError(f"Event record field 'source' is invalid: {e}") from e

        return cls(
            name=record["event"],
            id=record["id"],
            timestamp=record["timestamp"],
            spec_version=record["specVersion"],
            context=dict(context),
            data=dict(data) if data is not None else None,
            custom_dimensions=dict(dimensions) if dimensions is not None else None,
            source=source,
        )

    @classmethod
    def from_json(cls, line: str) -> Event:
        """
        Deserialize an event from a JSON line.

        Raises:
            MalformedEventError: If the line is not valid JSON or not an event
        """
        try:
            record = json.loads(line.strip())
        except json.JSONDecodeError as e:
            raise MalformedEventError(f"Invalid JSON: {e}") from e
        return cls.from_dict(record)
