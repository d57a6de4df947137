"""Stage execution: one stage, one external action, one StageResult.

Public API:
    - StageExecutor: Runs a stage and records its outcome
    - Stage: Stage declaration with failure policy
    - StageResult: Terminal, immutable outcome of a stage
    - StageStatus: skipped / succeeded / failed / aborted
    - StageExecutionError: Why an external action failed
    - MissingMetadataError: Template needs metadata nobody produced
    - AbortError: Stage stopped by cancellation
"""

from .exceptions import AbortError, MissingMetadataError, StageExecutionError
from .models import Stage, StageResult, StageStatus
from .stage_executor import StageExecutor

__all__ = [
    "StageExecutor",
    "Stage",
    "StageResult",
    "StageStatus",
    "StageExecutionError",
    "MissingMetadataError",
    "AbortError",
]
