"""Pipeline orchestrator.

Runs an ordered list of stages through the StageExecutor with fail-fast
semantics, cancellation, and post-run hooks, producing a PipelineRun.
"""

from .hooks import StageHook
from .models import ABORTED_EXIT_CODE, PipelineRun, RunStatus
from .pipeline import PipelineOrchestrator, PostRunHook

__all__ = [
    "PipelineOrchestrator",
    "PipelineRun",
    "RunStatus",
    "PostRunHook",
    "StageHook",
    "ABORTED_EXIT_CODE",
]
