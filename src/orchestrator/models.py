"""Data models for pipeline runs."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from src.classifier import ArtifactDescriptor
from src.executor import StageResult, StageStatus


class RunStatus(Enum):
    """Overall status of a pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATUSES = (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED)

ABORTED_EXIT_CODE = 130


@dataclass
class PipelineRun:
    """Aggregate result of a full pipeline run.

    Owned by the orchestrator; nothing else mutates it.

    Attributes:
        id: Run identifier, also used as the build id.
        status: Overall status.
        results: One StageResult per declared stage, in declared order.
        started_at: When the run began.
        finished_at: When the run reached a terminal status.
        metadata: Build metadata captured by stages (e.g. "version").
        error: Run-level cause (configuration problem, abort reason).
        hook_errors: Failures of post-run hooks.
    """

    id: str
    status: RunStatus = RunStatus.PENDING
    results: list[StageResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    hook_errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def exit_code(self) -> int:
        """Process exit signal: 0 iff the run succeeded."""
        if self.status is RunStatus.SUCCEEDED:
            return 0
        if self.status is RunStatus.ABORTED:
            return ABORTED_EXIT_CODE
        return 1

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return round((self.finished_at - self.started_at).total_seconds(), 2)

    @property
    def artifact(self) -> Optional[ArtifactDescriptor]:
        """The built artifact, once a stage captured its version."""
        if not self.metadata.get("version"):
            return None
        return ArtifactDescriptor.from_metadata(self.metadata, build_id=self.id)

    def result_for(self, stage_name: str) -> Optional[StageResult]:
        """Return the result for a stage, if it has one."""
        for result in self.results:
            if result.stage_name == stage_name:
                return result
        return None

    def failed_stages(self) -> list[str]:
        return [r.stage_name for r in self.results if r.status is StageStatus.FAILED]

    def summary_lines(self) -> list[str]:
        """Human-readable per-stage report."""
        lines = []
        for result in self.results:
            lines.append(
                f"  {result.stage_name}: {result.status.value.upper()} "
                f"({result.duration_seconds}s)"
            )
            if result.exit_code is not None and not result.success:
                lines.append(f"    exit code: {result.exit_code}")
            if result.error:
                lines.append(f"    cause: {result.error}")
        if self.error:
            lines.append(f"  run: {self.error}")
        for hook_error in self.hook_errors:
            lines.append(f"  post-run: {hook_error}")
        return lines

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "results": [r.to_dict() for r in self.results],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "metadata": dict(self.metadata),
            "error": self.error,
            "hook_errors": list(self.hook_errors),
        }
