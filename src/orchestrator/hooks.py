"""Post-run hooks that run external steps, e.g. cleanup after every run."""

import logging
from typing import Optional

from src.environment import EnvironmentContext
from src.executor import Stage, StageExecutionError, StageExecutor
from src.reports import ReportAggregator

from .models import PipelineRun

logger = logging.getLogger(__name__)


class StageHook:
    """Runs a stage as a post-run hook.

    Uses its own executor without a cancellation token, so cleanup still
    happens after an aborted run. A failing step raises
    StageExecutionError, which the orchestrator records as a hook error.
    """

    def __init__(
        self,
        stage: Stage,
        env: EnvironmentContext,
        reports: Optional[ReportAggregator] = None,
        executor: Optional[StageExecutor] = None,
    ):
        self.stage = stage
        self.name = stage.name
        self._env = env
        self._executor = executor or StageExecutor(reports=reports)

    def __call__(self, run: PipelineRun) -> None:
        logger.info("Running post-run step '%s' for run %s", self.name, run.id)
        result = self._executor.execute(self.stage, self._env, dict(run.metadata))
        if not result.success:
            raise StageExecutionError(
                self.name, result.error or "post-run step failed", result.exit_code
            )
