"""
Dead Letter Queue for failed deliveries.

Subscriber and plugin faults are isolated so they never abort a fan-out.
The dead letter queue keeps a record of each failed delivery for later
inspection or retry.

Usage:
    from opendatalayer import DataLayer
    from opendatalayer.dlq import DeadLetterQueue

    dlq = DeadLetterQueue(max_size=1000)
    layer = DataLayer(dead_letter_queue=dlq)

    # Later, inspect failed deliveries
    for item in dlq.get_all():
        print(f"Event {item.event.id} failed in {item.handler_name}: {item.error}")

    # Redeliver to the handler that failed
    dlq.retry(item.id)
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .events import Event

logger = logging.getLogger(__name__)


class FailureReason(Enum):
    """Reason for delivery failure."""

    HANDLER_ERROR = "handler_error"
    HANDLER_ASYNC_ERROR = "handler_async_error"
    PLUGIN_ERROR = "plugin_error"


@dataclass
class FailedDelivery:
    """
    Record of a failed delivery.

    Attributes:
        id: Unique ID for this DLQ entry
        event: The committed event that could not be delivered
        reason: Why the delivery failed
        error: Error message
        handler_name: Name of the handler or plugin that failed
        handler: The callable to redeliver to, if retry is possible
        timestamp: When the failure occurred
        retry_count: Number of retry attempts
        metadata: Additional context about the failure
    """

    id: str
    event: Event
    reason: FailureReason
    error: str
    handler_name: str | None = None
    handler: Callable[[Event], Any] | None = None
    timestamp: float = field(default_factory=time.time)
    retry_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "event": self.event.to_dict(),
            "reason": self.reason.value,
            "error": self.error,
            "handler_name": self.handler_name,
            "timestamp": self.timestamp,
            "retry_count": self.retry_count,
            "metadata": self.metadata,
        }


class DeadLetterQueue:
    """
    Bounded, thread-safe store of failed deliveries.

    When full, the oldest entry is discarded.
    """

    def __init__(self, max_size: int = 10000):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self._queue: deque[FailedDelivery] = deque(maxlen=max_size)
        self._lock = threading.Lock()
        self._by_id: dict[str, FailedDelivery] = {}

    def add(
        self,
        event: Event,
        reason: FailureReason,
        error: str,
        handler_name: str | None = None,
        handler: Callable[[Event], Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Add a failed delivery to the queue.

        Returns:
            ID of the DLQ entry
        """
        entry_id = f"dlq_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

        failed = FailedDelivery(
            id=entry_id,
            event=event,
            reason=reason,
            error=error,
            handler_name=handler_name,
            handler=handler,
            metadata=metadata or {},
        )

        with self._lock:
            if len(self._queue) >= self.max_size:
                self._by_id.pop(self._queue[0].id, None)
            self._queue.append(failed)
            self._by_id[entry_id] = failed

        logger.debug(
            "Delivery added to DLQ",
            extra={
                "dlq_id": entry_id,
                "event_id": event.id,
                "event_name": event.name,
                "reason": reason.value,
                "error": error[:200],
            },
        )
        return entry_id

    def get(self, entry_id: str) -> FailedDelivery | None:
        with self._lock:
            return self._by_id.get(entry_id)

    def get_all(self, limit: int = 100) -> list[FailedDelivery]:
        """Get failed deliveries (most recent first)."""
        with self._lock:
            return list(reversed(self._queue))[:limit]

    def get_by_event_name(self, event_name: str, limit: int = 100) -> list[FailedDelivery]:
        with self._lock:
            return [fd for fd in reversed(self._queue) if fd.event.name == event_name][:limit]

    def get_by_reason(self, reason: FailureReason, limit: int = 100) -> list[FailedDelivery]:
        with self._lock:
            return [fd for fd in reversed(self._queue) if fd.reason == reason][:limit]

    def remove(self, entry_id: str) -> bool:
        """
        Remove an entry from the queue.

        Returns:
            True if removed, False if not found
        """
        with self._lock:
            if self._by_id.pop(entry_id, None) is None:
                return False
            self._queue = deque(
                (fd for fd in self._queue if fd.id != entry_id),
                maxlen=self.max_size,
            )
            return True

    def retry(self, entry_id: str, remove_on_success: bool = True) -> bool:
        """
        Redeliver the stored event to the handler that failed.

        Args:
            entry_id: ID of the DLQ entry to retry
            remove_on_success: Whether to remove the entry if redelivery succeeds

        Returns:
            True if redelivery succeeded, False otherwise
        """
        failed = self.get(entry_id)
        if failed is None or failed.handler is None:
            return False

        with self._lock:
            failed.retry_count += 1
            failed.metadata["last_retry"] = time.time()

        try:
            failed.handler(failed.event)
        except Exception as e:  # nosec - retry failure is recorded, not raised
            with self._lock:
                failed.error = f"Retry failed: {e}"
            logger.warning(
                "DLQ redelivery failed",
                extra={"dlq_id": entry_id, "error": str(e)},
            )
            return False

        if remove_on_success:
            self.remove(entry_id)
        logger.info(
            "DLQ redelivery succeeded",
            extra={"dlq_id": entry_id, "event_id": failed.event.id},
        )
        return True

    def retry_all(self, max_retries: int = 3, remove_on_success: bool = True) -> dict[str, bool]:
        """
        Retry every entry that has not exceeded ``max_retries``.

        Returns:
            Dict mapping entry_id to success/failure
        """
        with self._lock:
            to_retry = [fd.id for fd in self._queue if fd.retry_count < max_retries]
        return {entry_id: self.retry(entry_id, remove_on_success) for entry_id in to_retry}

    def clear(self) -> int:
        """
        Clear all entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._queue)
            self._queue.clear()
            self._by_id.clear()
            return count

    def clear_older_than(self, hours: float = 24) -> int:
        """Clear entries older than ``hours``; returns the number cleared."""
        cutoff = time.time() - (hours * 3600)

        with self._lock:
            old_count = len(self._queue)
            self._queue = deque(
                (fd for fd in self._queue if fd.timestamp >= cutoff),
                maxlen=self.max_size,
            )
            self._by_id = {fd.id: fd for fd in self._queue}
            return old_count - len(self._queue)

    def size(self) -> int:
        with self._lock:
            return len(self._queue)

    def get_stats(self) -> dict[str, Any]:
        """Get DLQ statistics."""
        with self._lock:
            by_reason: dict[str, int] = {}
            by_event_name: dict[str, int] = {}

            for fd in self._queue:
                by_reason[fd.reason.value] = by_reason.get(fd.reason.value, 0) + 1
                by_event_name[fd.event.name] = by_event_name.get(fd.event.name, 0) + 1

            return {
                "size": len(self._queue),
                "max_size": self.max_size,
                "by_reason": by_reason,
                "by_event_name": by_event_name,
                "oldest_timestamp": self._queue[0].timestamp if self._queue else None,
                "newest_timestamp": self._queue[-1].timestamp if self._queue else None,
            }
