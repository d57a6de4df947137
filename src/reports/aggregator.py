"""ReportAggregator - append-only log of structured stage output."""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from .models import ReportEntry

logger = logging.getLogger(__name__)

Listener = Callable[[ReportEntry], None]


class ReportAggregator:
    """Collects scan reports, stage results and logs emitted by stages.

    Entries are kept in arrival order. Appends are serialized with a
    lock, so stage actions may record from worker threads. A stage that
    records nothing is not an error.

    Example:
        reports = ReportAggregator()
        reports.record("scan", "vulnerability-report", {"critical": 0})
        reports.by_kind("vulnerability-report")
    """

    def __init__(self, listeners: Optional[list[Listener]] = None):
        self._entries: list[ReportEntry] = []
        self._lock = threading.Lock()
        self._listeners: list[Listener] = list(listeners or [])

    def subscribe(self, listener: Listener) -> None:
        """Register a callback invoked after every new entry."""
        self._listeners.append(listener)

    def record(self, stage_name: str, kind: str, payload: Any) -> ReportEntry:
        """Append an entry and notify listeners.

        Args:
            stage_name: Stage that produced the payload.
            kind: Entry kind.
            payload: Report data.

        Returns:
            The stored ReportEntry.
        """
        with self._lock:
            entry = ReportEntry(
                sequence=len(self._entries),
                stage_name=stage_name,
                kind=kind,
                payload=payload,
            )
            self._entries.append(entry)

        for listener in self._listeners:
            try:
                listener(entry)
            except Exception:
                logger.exception(
                    "Report listener failed for %s/%s", stage_name, kind
                )
        return entry

    def collect_file(
        self, stage_name: str, kind: str, path: str | Path
    ) -> Optional[ReportEntry]:
        """Record the contents of a report file, if it exists.

        JSON files are parsed; anything else is stored as text. A file
        that fails to parse is stored as text with a warning.

        Returns:
            The stored entry, or None when the file is absent.
        """
        path = Path(path)
        if not path.is_file():
            logger.debug("No %s report at %s for stage %s", kind, path, stage_name)
            return None

        text = path.read_text(encoding="utf-8", errors="replace")
        payload: Any = text
        if path.suffix.lower() == ".json":
            try:
                payload = json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning("Report %s is not valid JSON: %s", path, e)
        return self.record(stage_name, kind, payload)

    def snapshot(self) -> list[ReportEntry]:
        """Return a copy of all entries in arrival order."""
        with self._lock:
            return list(self._entries)

    def by_stage(self, stage_name: str) -> list[ReportEntry]:
        """Return entries recorded for one stage."""
        return [e for e in self.snapshot() if e.stage_name == stage_name]

    def by_kind(self, kind: str) -> list[ReportEntry]:
        """Return entries of one kind."""
        return [e for e in self.snapshot() if e.kind == kind]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def to_dict(self) -> dict[str, Any]:
        """Serialize all entries to a dictionary."""
        return {"entries": [e.to_dict() for e in self.snapshot()]}

    def write_json(self, path: str | Path) -> Path:
        """Write all entries to a JSON file for publishing."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, default=str))
        logger.info("Wrote %d report entries to %s", len(self), path)
        return path
