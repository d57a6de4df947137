"""Data models for the report aggregator module."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Well-known entry kinds
STAGE_RESULT = "stage-result"
VULNERABILITY_REPORT = "vulnerability-report"
QUALITY_REPORT = "quality-report"
LOG = "log"


@dataclass(frozen=True)
class ReportEntry:
    """One recorded piece of stage output.

    Attributes:
        sequence: Arrival position, starting at 0.
        stage_name: Stage that produced the entry.
        kind: Entry kind, e.g. "vulnerability-report".
        payload: Parsed report data or text.
        recorded_at: When the entry was appended.
    """

    sequence: int
    stage_name: str
    kind: str
    payload: Any
    recorded_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "sequence": self.sequence,
            "stage_name": self.stage_name,
            "kind": self.kind,
            "payload": self.payload,
            "recorded_at": self.recorded_at.isoformat(),
        }
