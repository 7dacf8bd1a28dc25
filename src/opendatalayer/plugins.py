"""
Plugin capability and registry.

A plugin is a named unit with optional lifecycle hooks. Each hook is its own
capability protocol, and the registry only invokes a hook on the plugins that
implement it:

    initialize(layer)       called once at registration
    before_event(event)     called before commit; return the (possibly new)
                            event to let it through, or None to cancel it
    after_event(event)      called after commit
    destroy()               called at teardown

Usage:
    from opendatalayer.plugins import Plugin

    class ConsentGate(Plugin):
        name = "consent-gate"

        def before_event(self, event):
            consent = event.context.get("consent", {})
            return event if consent.get("status") == "granted" else None
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .dlq import FailureReason
from .events import Event

if TYPE_CHECKING:
    from .datalayer import DataLayer
    from .dlq import DeadLetterQueue

logger = logging.getLogger(__name__)

HOOKS = ("initialize", "before_event", "after_event", "destroy")


class PluginError(Exception):
    """Raised for plugin registration and hook contract errors."""


@runtime_checkable
class SupportsInitialize(Protocol):
    def initialize(self, layer: DataLayer) -> None: ...


@runtime_checkable
class SupportsBeforeEvent(Protocol):
    def before_event(self, event: Event) -> Event | None: ...


@runtime_checkable
class SupportsAfterEvent(Protocol):
    def after_event(self, event: Event) -> None: ...


@runtime_checkable
class SupportsDestroy(Protocol):
    def destroy(self) -> None: ...


CAPABILITIES: dict[str, type] = {
    "initialize": SupportsInitialize,
    "before_event": SupportsBeforeEvent,
    "after_event": SupportsAfterEvent,
    "destroy": SupportsDestroy,
}


class Plugin:
    """Base class for plugins. Subclasses set ``name`` and define any hooks."""

    name: str = "plugin"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def has_hook(plugin: Any, hook: str) -> bool:
    """Check whether ``plugin`` declares the capability for ``hook``."""
    try:
        capability = CAPABILITIES[hook]
    except KeyError:
        raise PluginError(f"Unknown plugin hook '{hook}', expected one of {HOOKS}") from None
    return isinstance(plugin, capability)


class PluginRegistry:
    """
    Ordered set of plugins keyed by name.

    Hooks run in registration order. ``before_event`` faults propagate like
    middleware faults; ``after_event`` and ``destroy`` faults are isolated.
    """

    def __init__(self, dead_letter_queue: DeadLetterQueue | None = None):
        self._plugins: list[Any] = []
        self._dlq = dead_letter_queue

    def register(self, plugin: Any) -> None:
        """
        Add a plugin.

        Raises:
            PluginError: If the plugin has no name or the name is taken
        """
        name = getattr(plugin, "name", None)
        if not isinstance(name, str) or not name:
            raise PluginError("plugin must have a non-empty string name")
        if self.get(name) is not None:
            raise PluginError(f"plugin '{name}' is already registered")
        self._plugins.append(plugin)
        logger.debug(f"Plugin registered: {name}")

    def get(self, name: str) -> Any | None:
        for plugin in self._plugins:
            if plugin.name == name:
                return plugin
        return None

    def names(self) -> list[str]:
        return [plugin.name for plugin in self._plugins]

    def with_hook(self, hook: str) -> list[Any]:
        """Return the registered plugins implementing ``hook``, in order."""
        return [plugin for plugin in self._plugins if has_hook(plugin, hook)]

    def __len__(self) -> int:
        return len(self._plugins)

    def __iter__(self):
        return iter(list(self._plugins))

    def initialize(self, plugin: Any, layer: DataLayer) -> None:
        """Run ``plugin``'s initialize hook if it has one."""
        if has_hook(plugin, "initialize"):
            plugin.initialize(layer)

    def run_before_event(self, event: Event) -> Event | None:
        """
        Pass the event through every before_event hook.

        Returns:
            The resulting event, or None if a plugin cancelled it

        Raises:
            PluginError: If a hook returns something other than an Event or None
        """
        current = event
        for plugin in self.with_hook("before_event"):
            result = plugin.before_event(current)
            if result is None:
                logger.debug(f"Plugin {plugin.name} cancelled event {current.name}")
                return None
            if not isinstance(result, Event):
                raise PluginError(
                    f"plugin '{plugin.name}' before_event returned {type(result).__name__}, "
                    "expected Event or None"
                )
            current = result
        return current

    def run_after_event(self, event: Event) -> None:
        """Notify every after_event hook; failures are isolated per plugin."""
        for plugin in self.with_hook("after_event"):
            try:
                plugin.after_event(event)
            except Exception as e:  # nosec - one plugin must not break the others
                logger.warning(
                    f"Plugin {plugin.name} after_event failed for {event.name}: {e}",
                    exc_info=e,
                    extra={"event_id": event.id, "plugin": plugin.name},
                )
                if self._dlq is not None:
                    self._dlq.add(
                        event=event,
                        reason=FailureReason.PLUGIN_ERROR,
                        error=str(e),
                        handler_name=plugin.name,
                        handler=plugin.after_event,
                    )

    def destroy_all(self) -> None:
        """Run every destroy hook (isolated) and empty the registry."""
        for plugin in self.with_hook("destroy"):
            try:
                plugin.destroy()
            except Exception as e:  # nosec - teardown continues past failures
                logger.warning(f"Plugin {plugin.name} destroy failed: {e}", exc_info=e)
        self._plugins = []


class DebugPlugin(Plugin):
    """
    Logs every committed event, for inspecting the event stream while
    developing.

    Args:
        logger: A logging.Logger or any callable taking the formatted parts
            (defaults to the "opendatalayer.debug" logger at DEBUG level)
        verbose: Also include the event context
    """

    name = "debug"

    def __init__(
        self,
        logger: logging.Logger | Callable[..., Any] | None = None,
        verbose: bool = False,
    ):
        self.logger = logger or logging.getLogger("opendatalayer.debug")
        self.verbose = verbose

    def format(self, event: Event) -> list[Any]:
        parts: list[Any] = [f"[ODL] {event.name}", {"id": event.id, "timestamp": event.timestamp}]
        if event.data:
            parts.append({"data": event.data})
        if event.custom_dimensions:
            parts.append({"customDimensions": event.custom_dimensions})
        if self.verbose and event.context:
            parts.append({"context": event.context})
        return parts

    def after_event(self, event: Event) -> None:
        parts = self.format(event)
        if isinstance(self.logger, logging.Logger):
            self.logger.debug(" ".join(str(part) for part in parts))
        else:
            self.logger(*parts)
