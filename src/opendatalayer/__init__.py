"""
OpenDataLayer - In-process event instrumentation.

Turns application signals ("a page was viewed", "a purchase completed") into
uniform, context-enriched event records, runs them through a cancellable
middleware pipeline, keeps a session-local history and fans them out to
subscribers.

Features:
- Ambient context snapshotted into every event
- Ordered, cancellable middleware with an enforced synchronous contract
- Pattern subscriptions ("*", "{namespace}.*", exact names)
- Handler error isolation with dead letter capture
- Plugins with optional lifecycle hooks (debug logging, JSONL persistence)
- PII stripping and redaction helpers
- Optional OpenTelemetry spans and Prometheus metrics
- Event name validation ({namespace}.{action} format)

Basic Usage:
    from opendatalayer import DataLayer

    layer = DataLayer(source={"name": "storefront", "version": "2.1.0"})
    layer.set_context("user", {"id": "42"})

    layer.on("page.*", lambda event: print(event.name, event.context))
    layer.emit("page.view", {"path": "/"})

With Plugins:
    from opendatalayer import DebugPlugin, OpenDataLayer

    odl = OpenDataLayer(plugins=[DebugPlugin(verbose=True)])
    odl.track("ecommerce.purchase", {"orderId": "A-1", "total": 42.0})
    odl.destroy()
"""

from .bus import EventBus, EventHandler, PatternError, Subscription, match_pattern, validate_pattern
from .context import ContextStore, deep_merge, structural_copy
from .datalayer import DataLayer
from .dlq import DeadLetterQueue, FailedDelivery, FailureReason
from .events import SPEC_VERSION, Event, EventSource, MalformedEventError, generate_event_id, now_iso
from .metrics import (
    CallbackMetrics,
    InMemoryMetrics,
    MetricsBackend,
    MetricsCollector,
    NoopMetrics,
    TimingContext,
)
from .middleware import STOP, Continue, MiddlewareError, MiddlewarePipeline, Stop
from .odl import OpenDataLayer
from .persistence import PersistencePlugin
from .plugins import DebugPlugin, Plugin, PluginError, PluginRegistry
from .sanitize import Redactor, pii_middleware, sanitize_string, strip_pii
from .telemetry import (
    add_event_to_span,
    get_current_span,
    get_tracer,
    is_otel_available,
    set_span_attribute,
    traced,
)
from .testing import EventSpy
from .validation import (
    EVENT_NAME_PATTERN,
    EventValidator,
    ValidationError,
    ValidationResult,
    extract_action,
    extract_namespace,
    is_valid_event_name,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "DataLayer",
    "OpenDataLayer",
    "Event",
    "EventSource",
    "MalformedEventError",
    "SPEC_VERSION",
    "generate_event_id",
    "now_iso",
    # Context
    "ContextStore",
    "deep_merge",
    "structural_copy",
    # Bus
    "EventBus",
    "EventHandler",
    "Subscription",
    "PatternError",
    "match_pattern",
    "validate_pattern",
    # Middleware
    "MiddlewarePipeline",
    "MiddlewareError",
    "Continue",
    "Stop",
    "STOP",
    # Plugins
    "Plugin",
    "PluginError",
    "PluginRegistry",
    "DebugPlugin",
    "PersistencePlugin",
    # PII
    "Redactor",
    "pii_middleware",
    "sanitize_string",
    "strip_pii",
    # Telemetry (OpenTelemetry integration)
    "is_otel_available",
    "get_tracer",
    "get_current_span",
    "traced",
    "add_event_to_span",
    "set_span_attribute",
    # Metrics
    "MetricsBackend",
    "MetricsCollector",
    "NoopMetrics",
    "CallbackMetrics",
    "InMemoryMetrics",
    "TimingContext",
    # Validation
    "EventValidator",
    "ValidationError",
    "ValidationResult",
    "EVENT_NAME_PATTERN",
    "is_valid_event_name",
    "extract_namespace",
    "extract_action",
    # Dead Letter Queue
    "DeadLetterQueue",
    "FailedDelivery",
    "FailureReason",
    # Testing
    "EventSpy",
]
