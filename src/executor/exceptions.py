"""Exceptions for the stage executor module."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import StageResult


class StageExecutionError(Exception):
    """Describes why an external action failed.

    The executor turns these into the cause string of a Failed
    StageResult; they are not raised past the executor.
    """

    def __init__(self, stage_name: str, reason: str, exit_code: Optional[int] = None):
        self.stage_name = stage_name
        self.reason = reason
        self.exit_code = exit_code
        super().__init__(reason)


class MissingMetadataError(StageExecutionError):
    """Raised when a template needs build metadata no stage produced."""

    def __init__(self, stage_name: str, key: str):
        self.key = key
        super().__init__(
            stage_name,
            f"Build metadata '{key}' is not available; "
            "no earlier stage captured it",
        )


class AbortError(Exception):
    """Raised when a stage was stopped by a cancellation request.

    Carries the Aborted StageResult so the orchestrator can record it.
    """

    def __init__(self, stage_name: str, result: "StageResult", reason: str | None = None):
        self.stage_name = stage_name
        self.result = result
        self.reason = reason or "cancelled"
        super().__init__(f"Stage '{stage_name}' aborted: {self.reason}")
