"""
Ambient context management for the data layer.

Context is a flat map of keys to arbitrary values, where each key is usually a
context domain ("page", "user", "session", ...). Every event created by the
DataLayer carries a snapshot of this map taken at creation time.

Values are treated as a closed JSON-like shape: mappings, lists and scalars
(str, int, float, bool, None). Snapshots follow JSON structural-copy
semantics, so values outside that shape are dropped instead of raising.

Usage:
    from opendatalayer.context import ContextStore

    store = ContextStore()
    store.set("page", {"path": "/", "title": "Home"})
    store.update("page", {"title": "Landing"})

    frozen = store.snapshot()  # independent deep copy
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Marker for values that have no structural representation
_DROP = object()


def _copy(value: Any, seen: set[int]) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, Mapping):
        if id(value) in seen:
            logger.debug("Dropping cyclic context reference")
            return _DROP
        seen.add(id(value))
        result: dict[str, Any] = {}
        for key, item in value.items():
            copied = _copy(item, seen)
            if copied is not _DROP:
                result[key if isinstance(key, str) else str(key)] = copied
        seen.discard(id(value))
        return result

    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            return _DROP
        seen.add(id(value))
        items = []
        for item in value:
            copied = _copy(item, seen)
            items.append(None if copied is _DROP else copied)
        seen.discard(id(value))
        return items

    # Functions, sets, arbitrary objects
    logger.debug(f"Dropping unrepresentable context value of type {type(value).__name__}")
    return _DROP


def structural_copy(value: Any) -> Any:
    """
    Deep-copy a value using JSON structural-copy semantics.

    Unrepresentable values are dropped from mappings and replaced with None
    inside lists. Returns None when the top-level value itself is
    unrepresentable.
    """
    copied = _copy(value, set())
    return None if copied is _DROP else copied


def deep_merge(target: Mapping[str, Any], *sources: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Deep-merge one or more source mappings into a copy of ``target``.

    - Nested mappings are merged recursively.
    - Lists are replaced, not concatenated.
    - None source values overwrite the target value.
    - The original ``target`` is not mutated; a new dict is returned.
    """
    result: dict[str, Any] = dict(target) if isinstance(target, Mapping) else {}

    for source in sources:
        if not isinstance(source, Mapping):
            continue
        for key, value in source.items():
            existing = result.get(key)
            if isinstance(value, Mapping) and isinstance(existing, Mapping):
                result[key] = deep_merge(existing, value)
            else:
                result[key] = value

    return result


class ContextStore:
    """
    Holds ambient key-scoped state merged into every event.

    The store is owned by a single DataLayer and is not synchronized;
    the DataLayer serializes access through its emission lock.
    """

    def __init__(self) -> None:
        self._context: dict[str, Any] = {}

    def get(self) -> dict[str, Any]:
        """
        Return the live context mapping (by reference).

        Prefer :meth:`snapshot` when an independent copy is needed.
        """
        return self._context

    def set(self, key: str, value: Any) -> None:
        """Replace the value stored under ``key``."""
        self._context[key] = value

    def update(self, key: str, partial: Mapping[str, Any]) -> None:
        """
        Deep-merge ``partial`` into the value stored under ``key``.

        If the existing value is not a mapping (missing, None, a list or a
        scalar), ``key`` is initialized to a shallow copy of ``partial``.
        """
        existing = self._context.get(key)
        if isinstance(existing, Mapping):
            self._context[key] = deep_merge(existing, partial)
        else:
            self._context[key] = dict(partial)

    def remove(self, key: str) -> None:
        """Delete ``key`` if present."""
        self._context.pop(key, None)

    def reset(self) -> None:
        """Clear all context."""
        self._context = {}

    def snapshot(self) -> dict[str, Any]:
        """Return a structural deep copy of the current context."""
        return structural_copy(self._context)

    def keys(self) -> list[str]:
        return list(self._context)

    def __contains__(self, key: object) -> bool:
        return key in self._context

    def __len__(self) -> int:
        return len(self._context)
