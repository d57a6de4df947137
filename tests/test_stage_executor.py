"""Unit tests for the StageExecutor."""

from unittest.mock import MagicMock

import pytest

from src.environment import REDACTED, ConfigurationError
from src.executor import AbortError, Stage, StageExecutor, StageStatus
from src.reports import LOG, VULNERABILITY_REPORT, ReportAggregator
from src.steps import (
    CANCELLED_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    Capture,
    ExternalStep,
    StepOutcome,
    StepRunner,
)

from tests.pipeline_test_helpers import make_env, python_stage


def _mock_runner(*outcomes: StepOutcome) -> MagicMock:
    runner = MagicMock(spec=StepRunner)
    runner.run.side_effect = list(outcomes)
    return runner


def _stage(name="build", **fields) -> Stage:
    policy = {k: fields.pop(k) for k in ("continue_on_failure", "timeout", "retries") if k in fields}
    return Stage(name=name, action=ExternalStep(tool="mvn", **fields), **policy)


@pytest.fixture
def env():
    return make_env(
        tool_paths={"mvn": "/opt/maven/bin/mvn"},
        credentials={"nexus": "p4ssw0rd"},
        variables={"REPOSITORY_URL": "https://nexus.example.com/repo"},
    )


class TestExitCodes:
    def test_zero_exit_succeeds(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0, stdout="ok"))
        result = StageExecutor(runner=runner).execute(_stage(), env)

        assert result.status is StageStatus.SUCCEEDED
        assert result.exit_code == 0
        assert result.error is None
        assert result.attempts == 1
        assert result.started_at <= result.finished_at

    def test_non_zero_exit_fails(self, env):
        runner = _mock_runner(StepOutcome(exit_code=2, stderr="compile error"))
        result = StageExecutor(runner=runner).execute(_stage(), env)

        assert result.status is StageStatus.FAILED
        assert result.exit_code == 2
        assert result.error == "Exited with code 2"
        assert "compile error" in result.output

    def test_custom_success_exit_codes(self, env):
        runner = _mock_runner(StepOutcome(exit_code=1))
        stage = _stage(success_exit_codes=(0, 1))
        assert StageExecutor(runner=runner).execute(stage, env).success

    def test_success_predicate_overrides_exit_code(self, env):
        def below_threshold(outcome):
            return "CRITICAL" not in outcome.stdout

        runner = _mock_runner(
            StepOutcome(exit_code=1, stdout="2 HIGH findings"),
            StepOutcome(exit_code=0, stdout="1 CRITICAL finding"),
        )
        executor = StageExecutor(runner=runner)
        stage = _stage(success_predicate=below_threshold)

        assert executor.execute(stage, env).status is StageStatus.SUCCEEDED
        failed = executor.execute(stage, env)
        assert failed.status is StageStatus.FAILED
        assert "rejected" in failed.error

    def test_raising_predicate_fails_stage(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        stage = _stage(success_predicate=MagicMock(side_effect=ValueError("bad report")))

        result = StageExecutor(runner=runner).execute(stage, env)

        assert result.status is StageStatus.FAILED
        assert "bad report" in result.error

    def test_timeout_is_failure_with_sentinel(self, env):
        runner = _mock_runner(StepOutcome(exit_code=TIMEOUT_EXIT_CODE, timed_out=True))
        result = StageExecutor(runner=runner).execute(_stage(timeout=5), env)

        assert result.status is StageStatus.FAILED
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert "Timed out after 5" in result.error
        assert runner.run.call_args.kwargs["timeout"] == 5

    def test_start_error_is_failure(self, env):
        runner = _mock_runner(StepOutcome(exit_code=127, error="Could not start mvn"))
        result = StageExecutor(runner=runner).execute(_stage(), env)

        assert result.status is StageStatus.FAILED
        assert result.error == "Could not start mvn"


class TestRetries:
    def test_retries_until_success(self, env):
        runner = _mock_runner(StepOutcome(exit_code=1), StepOutcome(exit_code=0))
        result = StageExecutor(runner=runner).execute(_stage(retries=2), env)

        assert result.success
        assert result.attempts == 2

    def test_gives_up_after_retries(self, env):
        runner = _mock_runner(*[StepOutcome(exit_code=1)] * 3)
        result = StageExecutor(runner=runner).execute(_stage(retries=2), env)

        assert result.status is StageStatus.FAILED
        assert result.attempts == 3
        assert runner.run.call_count == 3

    def test_timeout_applies_to_each_attempt(self, env):
        runner = _mock_runner(
            StepOutcome(exit_code=TIMEOUT_EXIT_CODE, timed_out=True),
            StepOutcome(exit_code=0),
        )
        result = StageExecutor(runner=runner).execute(_stage(timeout=30, retries=1), env)

        assert result.success
        assert result.attempts == 2
        assert [c.kwargs["timeout"] for c in runner.run.call_args_list] == [30, 30]

    def test_no_retry_by_default(self, env):
        runner = _mock_runner(StepOutcome(exit_code=1), StepOutcome(exit_code=0))
        result = StageExecutor(runner=runner).execute(_stage(), env)

        assert result.status is StageStatus.FAILED
        assert runner.run.call_count == 1


class TestConfiguration:
    def test_unknown_tool_raises_before_invocation(self, env):
        runner = _mock_runner()
        stage = Stage(name="lint", action=ExternalStep(tool="eslint"))

        with pytest.raises(ConfigurationError):
            StageExecutor(runner=runner).execute(stage, env)
        runner.run.assert_not_called()

    def test_unknown_credential_raises_before_invocation(self, env):
        runner = _mock_runner()
        stage = _stage(credentials={"TOKEN": "missing"})

        with pytest.raises(ConfigurationError):
            StageExecutor(runner=runner).execute(stage, env)
        runner.run.assert_not_called()

    def test_unknown_variable_raises(self, env):
        runner = _mock_runner()
        stage = _stage(args=("-Durl={vars[NOPE]}",))

        with pytest.raises(ConfigurationError):
            StageExecutor(runner=runner).execute(stage, env)
        runner.run.assert_not_called()

    def test_unknown_placeholder_raises(self, env):
        with pytest.raises(ConfigurationError):
            StageExecutor(runner=_mock_runner()).execute(_stage(args=("{mystery}",)), env)

    def test_malformed_template_raises(self, env):
        with pytest.raises(ConfigurationError):
            StageExecutor(runner=_mock_runner()).execute(_stage(args=("{unclosed",)), env)


class TestTemplates:
    def test_renders_tool_variables_and_metadata(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        stage = _stage(args=("deploy", "-Durl={vars[REPOSITORY_URL]}", "-Dv={meta[version]}"))

        StageExecutor(runner=runner).execute(stage, env, {"version": "1.0"})

        invocation = runner.run.call_args.args[0]
        assert invocation.argv == (
            "/opt/maven/bin/mvn",
            "deploy",
            "-Durl=https://nexus.example.com/repo",
            "-Dv=1.0",
        )

    def test_channel_from_snapshot_version(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        stage = _stage(args=("-Drepo={vars[REPOSITORY_URL]}/{channel}",))

        StageExecutor(runner=runner).execute(stage, env, {"version": "1.0-SNAPSHOT"})

        assert runner.run.call_args.args[0].argv[-1] == "-Drepo=https://nexus.example.com/repo/snapshots"

    def test_channel_from_release_version(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        stage = _stage(args=("{channel}",))

        StageExecutor(runner=runner).execute(stage, env, {"version": "1.0"})

        assert runner.run.call_args.args[0].argv[-1] == "releases"

    def test_channel_without_version_fails_only_this_stage(self, env):
        runner = _mock_runner()
        result = StageExecutor(runner=runner).execute(_stage(args=("{channel}",)), env, {})

        assert result.status is StageStatus.FAILED
        assert "classify" in result.error
        runner.run.assert_not_called()

    def test_missing_metadata_fails_stage(self, env):
        runner = _mock_runner()
        result = StageExecutor(runner=runner).execute(_stage(args=("{meta[version]}",)), env)

        assert result.status is StageStatus.FAILED
        assert "version" in result.error
        runner.run.assert_not_called()

    def test_build_id_from_metadata(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        StageExecutor(runner=runner).execute(
            _stage(args=("-Dbuild={build_id}",)), env, {"build_id": "run-7"}
        )
        assert runner.run.call_args.args[0].argv[-1] == "-Dbuild=run-7"

    def test_literal_braces(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        StageExecutor(runner=runner).execute(_stage(args=("{{json}}",)), env)
        assert runner.run.call_args.args[0].argv[-1] == "{json}"


class TestSecrets:
    def test_credentials_injected_into_env_overlay(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0))
        StageExecutor(runner=runner).execute(_stage(credentials={"NEXUS_PASSWORD": "nexus"}), env)

        invocation = runner.run.call_args.args[0]
        assert invocation.env["NEXUS_PASSWORD"] == "p4ssw0rd"
        assert "p4ssw0rd" not in repr(invocation)

    def test_output_is_redacted(self, env):
        runner = _mock_runner(StepOutcome(exit_code=1, stdout="auth with p4ssw0rd failed"))
        reports = ReportAggregator()

        result = StageExecutor(runner=runner, reports=reports).execute(_stage(), env)

        assert "p4ssw0rd" not in result.output
        assert REDACTED in result.output
        assert all("p4ssw0rd" not in str(e.payload) for e in reports.snapshot())


class TestCancellation:
    def test_cancelled_outcome_raises_abort_with_result(self, env):
        runner = _mock_runner(
            StepOutcome(exit_code=CANCELLED_EXIT_CODE, cancelled=True, error="operator abort")
        )

        with pytest.raises(AbortError) as exc_info:
            StageExecutor(runner=runner).execute(_stage(retries=3), env)

        result = exc_info.value.result
        assert result.status is StageStatus.ABORTED
        assert result.stage_name == "build"
        assert "operator abort" in result.error
        assert runner.run.call_count == 1


class TestCapturesAndReports:
    def test_pattern_capture(self, env):
        runner = _mock_runner(
            StepOutcome(exit_code=0, stdout="[INFO] Building shop-api 1.4.0-SNAPSHOT\n")
        )
        stage = _stage(captures={"version": Capture(pattern=r"^\[INFO\] Building \S+ (\S+)$")})

        result = StageExecutor(runner=runner).execute(stage, env)

        assert result.captured == {"version": "1.4.0-SNAPSHOT"}

    def test_file_capture(self, env, tmp_path):
        (tmp_path / "VERSION").write_text("2.0.0\n")
        runner = _mock_runner(StepOutcome(exit_code=0))
        stage = _stage(working_dir=str(tmp_path), captures={"version": Capture(file="VERSION")})

        result = StageExecutor(runner=runner).execute(stage, env)

        assert result.captured == {"version": "2.0.0"}

    def test_missing_capture_is_skipped(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0, stdout="nothing here"))
        stage = _stage(captures={"version": Capture(pattern=r"version (\S+)")})

        assert StageExecutor(runner=runner).execute(stage, env).captured == {}

    def test_no_capture_on_failure(self, env):
        runner = _mock_runner(StepOutcome(exit_code=1, stdout="version 1.0"))
        stage = _stage(captures={"version": Capture(pattern=r"version (\S+)")})

        assert StageExecutor(runner=runner).execute(stage, env).captured == {}

    def test_reports_collected_even_on_failure(self, env, tmp_path):
        (tmp_path / "scan.json").write_text('{"critical": 3}')
        runner = _mock_runner(StepOutcome(exit_code=1, stdout="findings"))
        reports = ReportAggregator()
        stage = _stage(working_dir=str(tmp_path), reports={VULNERABILITY_REPORT: "scan.json"})

        StageExecutor(runner=runner, reports=reports).execute(stage, env)

        [entry] = reports.by_kind(VULNERABILITY_REPORT)
        assert entry.stage_name == "build"
        assert entry.payload == {"critical": 3}
        assert reports.by_kind(LOG)[0].payload == "findings"

    def test_missing_report_file_is_not_an_error(self, env, tmp_path):
        runner = _mock_runner(StepOutcome(exit_code=0))
        reports = ReportAggregator()
        stage = _stage(working_dir=str(tmp_path), reports={VULNERABILITY_REPORT: "none.json"})

        result = StageExecutor(runner=runner, reports=reports).execute(stage, env)

        assert result.success
        assert reports.by_kind(VULNERABILITY_REPORT) == []

    def test_long_output_is_trimmed(self, env):
        runner = _mock_runner(StepOutcome(exit_code=0, stdout="x" * 100))
        result = StageExecutor(runner=runner, output_limit=10).execute(_stage(), env)
        assert result.output.endswith("x" * 10)
        assert result.output.startswith("...[truncated]")


class TestRealProcesses:
    def test_python_stage_end_to_end(self):
        stage = python_stage("build", "print('[INFO] Building demo 0.3.0')",
                             captures={"version": Capture(pattern=r"Building \S+ (\S+)")})
        result = StageExecutor().execute(stage, make_env())

        assert result.success
        assert result.captured["version"] == "0.3.0"

    def test_python_stage_timeout(self):
        stage = python_stage("slow", "import time; time.sleep(30)", timeout=0.3)
        result = StageExecutor().execute(stage, make_env())

        assert result.status is StageStatus.FAILED
        assert result.exit_code == TIMEOUT_EXIT_CODE
