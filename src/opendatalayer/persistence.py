"""
Persistence plugin - an optional JSONL cache of committed events.

Each committed event is appended to a JSONL file in the external event shape.
The file is capped at ``max_events`` records (oldest discarded first). When
the plugin is registered, the cached events are replayed through
``DataLayer.emit`` so they flow through middleware and subscribers again.

Malformed records are skipped on restore, never fatal. I/O failures are
logged and otherwise ignored: persistence must not break event processing.

Usage:
    from pathlib import Path
    from opendatalayer import OpenDataLayer
    from opendatalayer.persistence import PersistencePlugin

    odl = OpenDataLayer(plugins=[PersistencePlugin(Path("odl_events.jsonl"))])
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .events import Event, MalformedEventError
from .plugins import Plugin
from .sanitize import Redactor
from .validation import ValidationError

if TYPE_CHECKING:
    from .datalayer import DataLayer

logger = logging.getLogger(__name__)


class PersistencePlugin(Plugin):
    """
    Caches committed events in a JSONL file and restores them on startup.

    Args:
        path: JSONL file holding the cached events
        max_events: Maximum number of events kept in the file
        redactor: Optional Redactor applied to event data and context
            before writing
    """

    name = "persistence"

    def __init__(
        self,
        path: Path | str,
        max_events: int = 100,
        redactor: Redactor | None = None,
    ):
        self.path = Path(path)
        self.max_events = max_events
        self.redactor = redactor
        self._restoring = False
        self._line_count = 0
        self.restored_count = 0
        self.skipped_count = 0

    def initialize(self, layer: DataLayer) -> None:
        """Replay cached events through the data layer."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create event cache directory {self.path.parent}: {e}")
            return

        events = self.load()
        self._line_count = self._count_lines()

        self._restoring = True
        try:
            for event in events:
                try:
                    layer.emit(event.name, event.data, event.custom_dimensions)
                    self.restored_count += 1
                except (ValueError, ValidationError) as e:
                    self.skipped_count += 1
                    logger.warning(f"Skipping cached event {event.id}: {e}")
        finally:
            self._restoring = False

        logger.info(
            "Event cache restored",
            extra={
                "path": str(self.path),
                "restored": self.restored_count,
                "skipped": self.skipped_count,
            },
        )

    def after_event(self, event: Event) -> None:
        """Append a committed event to the cache."""
        if self._restoring:
            return

        if self.redactor is not None:
            event = self.redactor.redact_event(event)

        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(event.to_json() + "\n")
            self._line_count += 1
            if self._line_count > self.max_events:
                self._trim()
        except (OSError, ValueError) as e:  # nosec - cache failures must not break event processing
            logger.warning(f"Failed to cache event {event.id}: {e}")

    def load(self) -> list[Event]:
        """
        Read cached events, oldest first.

        Malformed lines (bad JSON, bad encoding or the wrong shape) are
        skipped. At most ``max_events`` (the newest) are returned.
        """
        if not self.path.exists():
            return []

        try:
            raw_lines = self._read_raw_lines()
        except OSError as e:  # nosec - unreadable cache means nothing to restore
            logger.warning(f"Failed to read event cache {self.path}: {e}")
            return []

        events: list[Event] = []
        for line_no, raw in enumerate(raw_lines, start=1):
            try:
                events.append(Event.from_json(raw.decode("utf-8")))
            except (UnicodeDecodeError, MalformedEventError) as e:
                self.skipped_count += 1
                logger.debug(f"Skipping malformed cache line {line_no}: {e}")

        return events[-self.max_events :] if self.max_events > 0 else []

    def _read_raw_lines(self) -> list[bytes]:
        with open(self.path, "rb") as f:
            return [line for line in f if line.strip()]

    def _count_lines(self) -> int:
        try:
            return len(self._read_raw_lines())
        except OSError:
            return 0

    def _trim(self) -> None:
        """Rewrite the cache keeping only the newest ``max_events`` decodable lines."""
        lines = []
        for raw in self._read_raw_lines():
            try:
                raw.decode("utf-8")
            except UnicodeDecodeError:
                continue
            lines.append(raw if raw.endswith(b"\n") else raw + b"\n")

        kept = lines[-self.max_events :] if self.max_events > 0 else []
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "wb") as f:
            f.writelines(kept)
        os.replace(tmp_path, self.path)
        self._line_count = len(kept)

    def clear(self) -> bool:
        """
        Delete the cache file.

        Returns:
            True if the cache is gone afterwards
        """
        try:
            if self.path.exists():
                self.path.unlink()
            self._line_count = 0
            return True
        except OSError:  # nosec - failure to clear is reported via the return value
            return False

    def get_stats(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "cached_events": self._line_count,
            "max_events": self.max_events,
            "restored": self.restored_count,
            "skipped": self.skipped_count,
            "file_size": self.path.stat().st_size if self.path.exists() else 0,
        }
