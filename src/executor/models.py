"""Data models for stages and their results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from src.environment.exceptions import ConfigurationError
from src.steps.models import ExternalStep


class StageStatus(Enum):
    """Terminal status of one stage."""

    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class Stage:
    """A named unit of pipeline work bound to one external action.

    Attributes:
        name: Unique name within the pipeline.
        action: The external step to run.
        continue_on_failure: A failure of this stage does not halt the run.
        timeout: Seconds before one attempt is stopped, or None. Each retry
            gets the full timeout again.
        retries: Extra attempts after a failed one.
    """

    name: str
    action: ExternalStep
    continue_on_failure: bool = False
    timeout: Optional[float] = None
    retries: int = 0

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Stage name must not be empty")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(
                f"Stage '{self.name}' timeout must be positive, got {self.timeout}",
                name=self.name,
            )
        if self.retries < 0:
            raise ConfigurationError(
                f"Stage '{self.name}' retries must be >= 0, got {self.retries}",
                name=self.name,
            )


@dataclass(frozen=True)
class StageResult:
    """Terminal outcome of one stage. Written once, never changed.

    Attributes:
        stage_name: Name of the stage.
        status: Terminal status.
        exit_code: Exit code of the last attempt, if a process ran.
        duration_seconds: Time spent on the stage, all attempts included.
        started_at: When the stage began.
        finished_at: When the stage reached its terminal status.
        output: Redacted combined output of the last attempt.
        error: Human-readable cause for non-successful stages.
        attempts: Number of process invocations.
        captured: Build metadata read from the action's output.
    """

    stage_name: str
    status: StageStatus
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    output: str = ""
    error: Optional[str] = None
    attempts: int = 0
    captured: Mapping[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status is StageStatus.SUCCEEDED

    @property
    def skipped(self) -> bool:
        return self.status is StageStatus.SKIPPED

    @classmethod
    def skip(cls, stage_name: str, reason: str) -> "StageResult":
        """Record a stage that never ran."""
        return cls(stage_name=stage_name, status=StageStatus.SKIPPED, error=reason)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary. Output is left out; it can be large."""
        return {
            "stage_name": self.stage_name,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "attempts": self.attempts,
            "captured": dict(self.captured),
        }
