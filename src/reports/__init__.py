"""Report aggregation for structured stage output.

Public API:
    - ReportAggregator: Append-only, thread-safe entry log
    - ReportEntry: One recorded payload
"""

from .aggregator import ReportAggregator
from .models import (
    LOG,
    QUALITY_REPORT,
    STAGE_RESULT,
    VULNERABILITY_REPORT,
    ReportEntry,
)

__all__ = [
    "ReportAggregator",
    "ReportEntry",
    "STAGE_RESULT",
    "VULNERABILITY_REPORT",
    "QUALITY_REPORT",
    "LOG",
]
