"""
OpenDataLayer - the public façade assembling plugins with a DataLayer.

Wraps a DataLayer and adds plugin lifecycle management:

- ``before_event`` hooks run as the first middleware; a hook returning None
  cancels the event
- ``after_event`` hooks run from a catch-all subscription, so they only see
  committed events
- ``destroy()`` tears every plugin down

Usage:
    from opendatalayer import DebugPlugin, OpenDataLayer

    with OpenDataLayer(
        plugins=[DebugPlugin()],
        context={"app": {"name": "storefront"}},
        source={"name": "storefront-web", "version": "2.1.0"},
    ) as odl:
        odl.track("page.view", {"path": "/"})
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from .bus import EventHandler, Unsubscribe
from .datalayer import DataLayer
from .events import Event
from .middleware import STOP, Middleware, Next, PipelineResult
from .plugins import PluginRegistry

logger = logging.getLogger(__name__)


class OpenDataLayer:
    """Public entry point: a DataLayer plus registered plugins."""

    def __init__(
        self,
        plugins: Iterable[Any] | None = None,
        context: Mapping[str, Any] | None = None,
        source: Any = None,
        **layer_options: Any,
    ):
        """
        Initialize the OpenDataLayer.

        Args:
            plugins: Plugins to register immediately
            context: Initial ambient context, keyed by domain
                (e.g. {"user": {"id": "42"}})
            source: Source metadata attached to every event
            **layer_options: Passed through to DataLayer (metrics,
                validate_events, dead_letter_queue, ...)
        """
        self.data_layer = DataLayer(source, **layer_options)
        self.plugins = PluginRegistry(dead_letter_queue=layer_options.get("dead_letter_queue"))

        self.data_layer.use(self._run_before_hooks)
        self.data_layer.on("*", self.plugins.run_after_event)

        for key, value in (context or {}).items():
            self.data_layer.set_context(key, value)

        for plugin in plugins or ():
            self.use(plugin)

    def _run_before_hooks(self, event: Event, next: Next) -> PipelineResult:
        processed = self.plugins.run_before_event(event)
        if processed is None:
            return STOP
        return next(processed)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def track(
        self,
        name: str,
        data: Mapping[str, Any] | None = None,
        custom_dimensions: Mapping[str, Any] | None = None,
    ) -> Event:
        """Track an event; see DataLayer.emit."""
        return self.data_layer.emit(name, data, custom_dimensions)

    def get_events(self) -> tuple[Event, ...]:
        return self.data_layer.get_events()

    def get_last_event(self) -> Event | None:
        return self.data_layer.get_last_event()

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def get_context(self) -> dict[str, Any]:
        return self.data_layer.get_context()

    def set_context(self, key: str, value: Any) -> None:
        self.data_layer.set_context(key, value)

    def update_context(self, key: str, partial: Mapping[str, Any]) -> None:
        self.data_layer.update_context(key, partial)

    def remove_context(self, key: str) -> None:
        self.data_layer.remove_context(key)

    # ------------------------------------------------------------------
    # Subscriptions, plugins and middleware
    # ------------------------------------------------------------------

    def on(self, pattern: str, handler: EventHandler) -> Unsubscribe:
        return self.data_layer.on(pattern, handler)

    def use(self, plugin: Any) -> None:
        """Register a plugin and run its initialize hook."""
        self.plugins.register(plugin)
        self.plugins.initialize(plugin, self.data_layer)

    def add_middleware(self, fn: Middleware) -> None:
        """
        Append a raw middleware after the plugin hooks.

        Plugin authors should prefer before_event / after_event hooks.
        """
        self.data_layer.use(fn)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Clear stored events and context."""
        self.data_layer.reset()

    def destroy(self) -> None:
        """Tear down all plugins and reset the data layer."""
        self.plugins.destroy_all()
        self.data_layer.reset()
        logger.debug("OpenDataLayer destroyed")

    def __enter__(self) -> OpenDataLayer:
        return self

    def __exit__(self, *args: Any) -> None:
        self.destroy()
