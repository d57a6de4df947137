"""PipelineOrchestrator - drives stages in order and owns the PipelineRun."""

import logging
import re
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Iterable, Optional

from src.environment import ConfigurationError, EnvironmentContext
from src.executor import (
    AbortError,
    Stage,
    StageExecutor,
    StageResult,
    StageStatus,
)
from src.reports import STAGE_RESULT, ReportAggregator
from src.steps import CancellationToken

from .models import PipelineRun, RunStatus

logger = logging.getLogger(__name__)

PostRunHook = Callable[[PipelineRun], None]

_VARIABLE_REF = re.compile(r"\{vars\[([^\]]+)\]\}")


class PipelineOrchestrator:
    """Runs an ordered list of stages with fail-fast semantics.

    Stages run one at a time, in declared order, on the calling thread.
    A failure on a stage that does not tolerate failure halts the run
    and the remaining stages are recorded as skipped. Post-run hooks run
    after every run, whatever its outcome.

    Example:
        orchestrator = PipelineOrchestrator(reports=ReportAggregator())
        run = orchestrator.run(stages, env)
        print(f"Status: {run.status.value}")
    """

    def __init__(
        self,
        executor: Optional[StageExecutor] = None,
        reports: Optional[ReportAggregator] = None,
        cancel_token: Optional[CancellationToken] = None,
        hooks: Optional[list[PostRunHook]] = None,
        build_id: Optional[str] = None,
        preflight: bool = True,
    ):
        self._executor = executor
        self._owns_executor = False
        self._reports = reports if reports is not None else ReportAggregator()
        self._owns_token = cancel_token is None
        self._cancel_token = cancel_token or CancellationToken()
        self._hooks: list[PostRunHook] = list(hooks or [])
        self._build_id = build_id
        self._preflight = preflight

    @property
    def reports(self) -> ReportAggregator:
        return self._reports

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel_token

    def _get_executor(self) -> StageExecutor:
        if self._executor is None:
            self._executor = StageExecutor(
                reports=self._reports,
                cancel_token=self._cancel_token,
            )
            self._owns_executor = True
        return self._executor

    def _renew_token(self) -> None:
        """Replace a spent token so the next run starts uncancelled.

        An injected token belongs to the caller and is left as it is.
        """
        if not (self._owns_token and self._cancel_token.is_cancelled):
            return
        self._cancel_token = CancellationToken()
        if self._owns_executor:
            self._executor = None
            self._owns_executor = False

    def add_hook(self, hook: PostRunHook) -> None:
        """Register a callable to run after every run."""
        self._hooks.append(hook)

    def cancel(self, reason: str = "cancelled by operator") -> None:
        """Abort the current run, stopping the running stage.

        Called between runs, it aborts the next one. Once that run has
        finished the orchestrator accepts new runs, unless the token was
        passed in by the caller.
        """
        logger.warning("Cancellation requested: %s", reason)
        self._cancel_token.cancel(reason)

    @staticmethod
    def _check_unique(stages: list[Stage]) -> None:
        seen = set()
        for stage in stages:
            if stage.name in seen:
                raise ConfigurationError(
                    f"Duplicate stage name '{stage.name}'", name=stage.name
                )
            seen.add(stage.name)

    @staticmethod
    def preflight_check(stages: Iterable[Stage], env: EnvironmentContext) -> list[str]:
        """Check every tool, credential and variable a stage refers to.

        Returns:
            One message per missing binding; empty when all are bound.
        """
        problems = []
        for stage in stages:
            action = stage.action
            try:
                env.resolve_tool(action.tool)
            except ConfigurationError as e:
                problems.append(f"{stage.name}: {e}")
            for cred_id in action.credentials.values():
                try:
                    env.resolve_credential(cred_id)
                except ConfigurationError as e:
                    problems.append(f"{stage.name}: {e}")
            templates = [*action.args, *action.env.values(), *action.reports.values()]
            if action.working_dir:
                templates.append(action.working_dir)
            for name in sorted({m for t in templates for m in _VARIABLE_REF.findall(t)}):
                try:
                    env.resolve_variable(name)
                except ConfigurationError as e:
                    problems.append(f"{stage.name}: {e}")
        return problems

    def _record(self, run: PipelineRun, result: StageResult) -> None:
        run.results.append(result)
        self._reports.record(result.stage_name, STAGE_RESULT, result.to_dict())

    def _skip_remaining(self, run: PipelineRun, stages: list[Stage], reason: str) -> None:
        """Record every stage without a result as skipped."""
        for stage in stages[len(run.results):]:
            logger.info("Skipping stage '%s': %s", stage.name, reason, extra={"run_id": run.id})
            self._record(run, StageResult.skip(stage.name, reason))

    def _execute_stages(
        self, run: PipelineRun, stages: list[Stage], env: EnvironmentContext
    ) -> None:
        log_extra = {"run_id": run.id}

        if self._preflight:
            problems = self.preflight_check(stages, env)
            if problems:
                run.error = "Configuration error: " + "; ".join(problems)
                logger.error("%s", run.error, extra=log_extra)
                self._skip_remaining(run, stages, "configuration error before start")
                run.status = RunStatus.FAILED
                return

        executor = self._get_executor()

        for stage in stages:
            if self._cancel_token.is_cancelled:
                run.error = f"Aborted: {self._cancel_token.reason}"
                logger.warning("%s", run.error, extra=log_extra)
                self._skip_remaining(run, stages, "run aborted")
                run.status = RunStatus.ABORTED
                return

            try:
                result = executor.execute(
                    stage, env, MappingProxyType(dict(run.metadata))
                )
            except AbortError as e:
                self._record(run, e.result)
                run.error = f"Aborted during '{stage.name}': {e.reason}"
                logger.warning("%s", run.error, extra=log_extra)
                self._skip_remaining(run, stages, "run aborted")
                run.status = RunStatus.ABORTED
                return
            except ConfigurationError as e:
                logger.error("Stage '%s' is misconfigured: %s", stage.name, e, extra=log_extra)
                self._record(
                    run,
                    StageResult(
                        stage_name=stage.name,
                        status=StageStatus.FAILED,
                        error=f"Configuration error: {e}",
                    ),
                )
                run.error = f"Configuration error in '{stage.name}'"
                self._skip_remaining(run, stages, f"halted by configuration error in '{stage.name}'")
                run.status = RunStatus.FAILED
                return

            self._record(run, result)
            run.metadata.update(result.captured)

            if result.status is StageStatus.FAILED:
                if not stage.continue_on_failure:
                    self._skip_remaining(run, stages, f"'{stage.name}' failed")
                    run.status = RunStatus.FAILED
                    return
                logger.warning(
                    "Stage '%s' failed but is allowed to; continuing", stage.name,
                    extra=log_extra,
                )

        run.status = RunStatus.SUCCEEDED

    def _run_hooks(self, run: PipelineRun) -> None:
        for hook in self._hooks:
            name = getattr(hook, "name", None) or getattr(hook, "__name__", repr(hook))
            try:
                hook(run)
            except Exception as e:
                logger.exception("Post-run hook '%s' failed", name, extra={"run_id": run.id})
                run.hook_errors.append(f"{name}: {e}")

    def run(self, stages: Iterable[Stage], env: EnvironmentContext) -> PipelineRun:
        """Execute the stages in declared order.

        Args:
            stages: Ordered stage declarations. Names must be unique.
            env: Bindings shared by every stage.

        Returns:
            PipelineRun with one StageResult per stage and a terminal status.

        Raises:
            ConfigurationError: If two stages share a name.
        """
        stages = list(stages)
        self._check_unique(stages)

        run = PipelineRun(id=self._build_id or uuid.uuid4().hex[:12])
        run.metadata["build_id"] = run.id
        run.status = RunStatus.RUNNING
        run.started_at = datetime.now(timezone.utc)
        logger.info(
            "Starting run %s with %d stages", run.id, len(stages), extra={"run_id": run.id}
        )

        try:
            self._execute_stages(run, stages, env)
        finally:
            if run.status is RunStatus.RUNNING:
                run.status = RunStatus.FAILED
                run.error = run.error or "Run stopped unexpectedly"
            run.finished_at = datetime.now(timezone.utc)
            logger.info(
                "Run %s finished: %s in %.2fs",
                run.id, run.status.value, run.duration_seconds,
                extra={"run_id": run.id},
            )
            self._run_hooks(run)
            self._renew_token()

        return run
