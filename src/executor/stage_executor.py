"""StageExecutor - runs one stage and turns its outcome into a StageResult."""

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from src.classifier import ClassificationError, classify
from src.environment import ConfigurationError, EnvironmentContext
from src.reports import LOG, ReportAggregator
from src.steps import CancellationToken, StepInvocation, StepOutcome, StepRunner
from src.steps.models import Capture

from .exceptions import AbortError, MissingMetadataError, StageExecutionError
from .models import Stage, StageResult, StageStatus

logger = logging.getLogger(__name__)

# Keep the tail of long build logs in results
DEFAULT_OUTPUT_LIMIT = 64 * 1024


class _Lookup:
    """Read-only mapping used for {vars[...]} and {meta[...]} placeholders."""

    def __init__(self, resolve):
        self._resolve = resolve

    def __getitem__(self, key: str) -> str:
        return self._resolve(key)


class _TemplateValues(dict):
    """Placeholder values for str.format_map.

    {channel} is only computed when a template asks for it, so stages
    that don't deploy never touch the classifier.
    """

    def __init__(
        self,
        stage_name: str,
        env: EnvironmentContext,
        metadata: Mapping[str, str],
        build_id: str,
    ):
        def meta(key: str) -> str:
            if key not in metadata:
                raise MissingMetadataError(stage_name, key)
            return metadata[key]

        super().__init__(
            vars=_Lookup(env.resolve_variable),
            meta=_Lookup(meta),
            build_id=build_id,
        )
        self._metadata = metadata

    def __missing__(self, key: str) -> str:
        if key == "channel":
            return classify(self._metadata.get("version", "")).value
        raise ConfigurationError(f"Unknown template placeholder '{{{key}}}'", name=key)


class StageExecutor:
    """Runs a stage's external action and records what happened.

    Resolves tools and credentials from the EnvironmentContext, renders
    templates, invokes the step with the stage's timeout, applies the
    retry policy, redacts output, and collects declared reports.

    Only two exceptions leave execute():
        ConfigurationError: a binding is missing; nothing was started.
        AbortError: the run was cancelled while the stage was running.

    Example:
        executor = StageExecutor(reports=ReportAggregator())
        result = executor.execute(stage, env)
        print(result.status)
    """

    def __init__(
        self,
        runner: Optional[StepRunner] = None,
        reports: Optional[ReportAggregator] = None,
        cancel_token: Optional[CancellationToken] = None,
        build_id: str = "",
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
    ):
        self._runner = runner
        self._reports = reports
        self._cancel_token = cancel_token
        self._build_id = build_id
        self._output_limit = output_limit

    def _get_runner(self) -> StepRunner:
        if self._runner is None:
            self._runner = StepRunner()
        return self._runner

    def _render(self, template: str, values: _TemplateValues, stage: Stage) -> str:
        try:
            return template.format_map(values)
        except (ValueError, IndexError, AttributeError) as e:
            raise ConfigurationError(
                f"Stage '{stage.name}' has a malformed template {template!r}: {e}",
                name=stage.name,
            ) from e

    def build_invocation(
        self,
        stage: Stage,
        env: EnvironmentContext,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> StepInvocation:
        """Resolve bindings and render templates for a stage.

        Raises:
            ConfigurationError: Unknown tool, credential or variable.
            StageExecutionError: Required build metadata is missing.
            ClassificationError: {channel} used with an invalid version.
        """
        action = stage.action
        executable = env.resolve_tool(action.tool)
        secrets = {
            var: env.resolve_credential(cred_id)
            for var, cred_id in action.credentials.items()
        }

        metadata = metadata or {}
        build_id = metadata.get("build_id") or self._build_id
        values = _TemplateValues(stage.name, env, metadata, build_id)
        argv = (executable, *(self._render(a, values, stage) for a in action.args))
        overlay = {k: self._render(v, values, stage) for k, v in action.env.items()}
        overlay.update({var: handle.reveal() for var, handle in secrets.items()})

        cwd = self._render(action.working_dir, values, stage) if action.working_dir else None
        return StepInvocation(argv=argv, cwd=cwd, env=MappingProxyType(overlay))

    def _evaluate(self, stage: Stage, outcome: StepOutcome) -> Optional[StageExecutionError]:
        """Return the failure for an outcome, or None if it succeeded."""
        action = stage.action
        if outcome.timed_out:
            return StageExecutionError(
                stage.name, f"Timed out after {stage.timeout}s", outcome.exit_code
            )
        if outcome.error:
            return StageExecutionError(stage.name, outcome.error, outcome.exit_code)

        if action.success_predicate is not None:
            try:
                ok = action.success_predicate(outcome)
            except Exception as e:
                logger.exception("Success predicate for stage '%s' raised", stage.name)
                return StageExecutionError(
                    stage.name, f"Success check raised {type(e).__name__}: {e}",
                    outcome.exit_code,
                )
            if ok:
                return None
            return StageExecutionError(
                stage.name,
                f"Success check rejected exit code {outcome.exit_code}",
                outcome.exit_code,
            )

        if outcome.exit_code in action.success_exit_codes:
            return None
        return StageExecutionError(
            stage.name, f"Exited with code {outcome.exit_code}", outcome.exit_code
        )

    def _capture(
        self, stage: Stage, outcome: StepOutcome, cwd: Optional[str], env: EnvironmentContext
    ) -> dict[str, str]:
        captured = {}
        for key, rule in stage.action.captures.items():
            value = self._read_capture(rule, outcome, cwd)
            if value is None:
                logger.warning(
                    "Stage '%s' did not produce metadata '%s'", stage.name, key,
                    extra={"stage": stage.name},
                )
                continue
            captured[key] = env.redact(value)
        return captured

    @staticmethod
    def _read_capture(rule: Capture, outcome: StepOutcome, cwd: Optional[str]) -> Optional[str]:
        if rule.pattern is not None:
            match = re.search(rule.pattern, outcome.stdout, re.MULTILINE)
            if match is None:
                return None
            return match.group(1) if match.groups() else match.group(0)

        path = Path(cwd or ".") / rule.file
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8", errors="replace").strip() or None

    def _collect_reports(
        self, stage: Stage, cwd: Optional[str], values: _TemplateValues
    ) -> None:
        if self._reports is None:
            return
        for kind, template in stage.action.reports.items():
            try:
                relative = self._render(template, values, stage)
            except (StageExecutionError, ClassificationError) as e:
                logger.warning("Report path for %s not rendered: %s", kind, e)
                continue
            self._reports.collect_file(stage.name, kind, Path(cwd or ".") / relative)

    def _trim(self, text: str) -> str:
        if len(text) <= self._output_limit:
            return text
        return "...[truncated]\n" + text[-self._output_limit:]

    def execute(
        self,
        stage: Stage,
        env: EnvironmentContext,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> StageResult:
        """Run a stage to a terminal StageResult.

        Args:
            stage: Stage to run.
            env: Bindings for tools, credentials and variables.
            metadata: Build metadata published by earlier stages.

        Returns:
            StageResult with status Succeeded or Failed.

        Raises:
            ConfigurationError: Missing binding, raised before invocation.
            AbortError: Cancelled while running; carries an Aborted result.
        """
        metadata = metadata or {}
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        log_extra = {"stage": stage.name}

        def finish(status: StageStatus, **fields) -> StageResult:
            return StageResult(
                stage_name=stage.name,
                status=status,
                duration_seconds=round(time.monotonic() - start, 2),
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
                **fields,
            )

        try:
            invocation = self.build_invocation(stage, env, metadata)
        except (StageExecutionError, ClassificationError) as e:
            logger.error("Stage '%s' cannot start: %s", stage.name, e, extra=log_extra)
            return finish(StageStatus.FAILED, error=str(e))

        logger.info("Stage '%s': %s", stage.name, env.redact(invocation.display), extra=log_extra)

        attempts = 0
        while True:
            attempts += 1
            outcome = self._get_runner().run(
                invocation, timeout=stage.timeout, cancel_token=self._cancel_token
            )
            output = self._trim(env.redact(outcome.output))

            if outcome.cancelled:
                reason = outcome.error or "cancelled"
                result = finish(
                    StageStatus.ABORTED,
                    exit_code=outcome.exit_code,
                    output=output,
                    error=f"Aborted: {reason}",
                    attempts=attempts,
                )
                raise AbortError(stage.name, result, reason)

            failure = self._evaluate(stage, outcome)
            if failure is None or attempts > stage.retries:
                break
            logger.warning(
                "Stage '%s' attempt %d/%d failed (%s), retrying",
                stage.name, attempts, stage.retries + 1, failure,
                extra=log_extra,
            )

        values = _TemplateValues(
            stage.name, env, metadata, metadata.get("build_id") or self._build_id
        )
        self._collect_reports(stage, invocation.cwd, values)
        if self._reports is not None and output:
            self._reports.record(stage.name, LOG, output)

        if failure is not None:
            logger.error("Stage '%s' failed: %s", stage.name, failure, extra=log_extra)
            return finish(
                StageStatus.FAILED,
                exit_code=outcome.exit_code,
                output=output,
                error=env.redact(str(failure)),
                attempts=attempts,
            )

        captured = self._capture(stage, outcome, invocation.cwd, env)
        logger.info(
            "Stage '%s' succeeded in %.2fs", stage.name, outcome.duration_seconds,
            extra=log_extra,
        )
        return finish(
            StageStatus.SUCCEEDED,
            exit_code=outcome.exit_code,
            output=output,
            attempts=attempts,
            captured=captured,
        )
