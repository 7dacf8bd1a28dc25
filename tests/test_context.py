"""
Context store tests.

Covers set/update/remove/reset semantics, deep merge and structural
snapshots.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from opendatalayer import ContextStore, deep_merge, structural_copy


class TestContextStore:
    """Test ContextStore operations."""

    def test_set_replaces_wholesale(self):
        store = ContextStore()
        store.set("page", {"path": "/", "title": "Home"})
        store.set("page", {"path": "/cart"})
        assert store.get() == {"page": {"path": "/cart"}}

    def test_update_deep_merges_mappings(self):
        store = ContextStore()
        store.set("k", {"a": 1, "b": {"c": 2}})
        store.update("k", {"b": {"d": 3}})
        assert store.get()["k"] == {"a": 1, "b": {"c": 2, "d": 3}}

    def test_update_overwrites_non_mapping(self):
        store = ContextStore()
        store.set("k", 5)
        store.update("k", {"x": 1})
        assert store.get()["k"] == {"x": 1}

    def test_update_overwrites_list(self):
        store = ContextStore()
        store.set("k", [1, 2])
        store.update("k", {"x": 1})
        assert store.get()["k"] == {"x": 1}

    def test_update_missing_key_initializes(self):
        store = ContextStore()
        partial = {"x": {"y": 1}}
        store.update("k", partial)

        assert store.get()["k"] == {"x": {"y": 1}}
        assert store.get()["k"] is not partial

    def test_update_replaces_lists_and_accepts_none(self):
        store = ContextStore()
        store.set("k", {"tags": [1, 2], "flag": True})
        store.update("k", {"tags": [3], "flag": None})
        assert store.get()["k"] == {"tags": [3], "flag": None}

    def test_update_does_not_mutate_previous_value(self):
        store = ContextStore()
        original = {"b": {"c": 2}}
        store.set("k", original)
        store.update("k", {"b": {"d": 3}})
        assert original == {"b": {"c": 2}}

    def test_remove(self):
        store = ContextStore()
        store.set("user", {"id": "42"})
        store.remove("user")
        store.remove("absent")
        assert "user" not in store
        assert len(store) == 0

    def test_reset(self):
        store = ContextStore()
        store.set("a", 1)
        store.set("b", 2)
        store.reset()
        assert store.get() == {}
        assert store.keys() == []


class TestSnapshot:
    """Snapshots are independent values."""

    def test_snapshot_is_deep_copy(self):
        store = ContextStore()
        store.set("user", {"traits": {"plan": "free"}})
        snap = store.snapshot()

        store.get()["user"]["traits"]["plan"] = "pro"
        assert snap["user"]["traits"]["plan"] == "free"

    def test_snapshot_drops_unrepresentable_values(self):
        store = ContextStore()
        store.set("page", {"path": "/", "callback": lambda: None, "tags": {1, 2}})
        assert store.snapshot() == {"page": {"path": "/"}}

    def test_unrepresentable_list_items_become_none(self):
        assert structural_copy([1, object(), "x"]) == [1, None, "x"]

    def test_cycles_are_dropped(self):
        node: dict = {"name": "root"}
        node["self"] = node
        assert structural_copy(node) == {"name": "root"}

    def test_json_coercions(self):
        moment = datetime(2024, 11, 15, 8, 30, tzinfo=timezone.utc)
        copied = structural_copy({"t": (1, 2), "at": moment, "nan": math.nan, 3: "three"})
        assert copied == {"t": [1, 2], "at": moment.isoformat(), "nan": None, "3": "three"}

    def test_unrepresentable_top_level(self):
        assert structural_copy(object()) is None


class TestDeepMerge:
    def test_multiple_sources(self):
        merged = deep_merge({"a": {"x": 1}}, {"a": {"y": 2}}, None, {"b": 3})
        assert merged == {"a": {"x": 1, "y": 2}, "b": 3}

    def test_target_not_mutated(self):
        target = {"a": {"x": 1}}
        deep_merge(target, {"a": {"x": 2}})
        assert target == {"a": {"x": 1}}
