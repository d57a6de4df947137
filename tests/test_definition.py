"""Tests for loading pipeline definitions from YAML."""

from pathlib import Path

import pytest

from src.definition import DefinitionError, load_pipeline, parse_definition, parse_stage
from src.environment import ConfigurationError
from src.orchestrator import PipelineOrchestrator
from src.reports import VULNERABILITY_REPORT
from src.steps import Capture

EXAMPLE = Path(__file__).resolve().parent.parent / "config" / "pipeline.example.yaml"

EXAMPLE_ENVIRON = {
    "SONAR_TOKEN": "sq-token",
    "NEXUS_USER": "ci",
    "NEXUS_PASSWORD": "hunter2",
}

MINIMAL = """
name: shop-api
environment:
  tools:
    mvn: /opt/maven/bin/mvn
  credentials:
    nexus: {env: NEXUS_PASSWORD}
  variables:
    REPOSITORY_URL: http://nexus.internal/repository
stages:
  - name: compile
    tool: mvn
    args: [-B, compile]
"""


def _write(tmp_path, text, name="pipeline.yaml"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestParseStage:
    def test_raw_step(self):
        stage = parse_stage(
            {
                "name": "compile",
                "tool": "mvn",
                "args": ["-B", "compile", 3],
                "working_dir": "shop-api",
                "env": {"MAVEN_OPTS": "-Xmx1g"},
                "credentials": {"TOKEN": "nexus"},
                "success_exit_codes": [0, 3],
                "continue_on_failure": True,
                "timeout": 60,
                "retries": 1,
            },
            0,
        )
        assert stage.name == "compile"
        assert stage.action.tool == "mvn"
        assert stage.action.args == ("-B", "compile", "3")
        assert stage.action.working_dir == "shop-api"
        assert stage.action.env == {"MAVEN_OPTS": "-Xmx1g"}
        assert stage.action.credentials == {"TOKEN": "nexus"}
        assert stage.action.success_exit_codes == (0, 3)
        assert stage.continue_on_failure is True
        assert stage.timeout == 60.0
        assert stage.retries == 1

    def test_binding_with_parameters(self):
        stage = parse_stage(
            {"name": "scan", "uses": "filesystem_scan", "with": {"severity": "CRITICAL"}}, 0
        )
        assert stage.action.tool == "trivy"
        assert "CRITICAL" in stage.action.args
        assert VULNERABILITY_REPORT in stage.action.reports

    def test_step_keys_override_binding(self):
        stage = parse_stage(
            {"name": "scan", "uses": "filesystem_scan", "tool": "trivy-0.50", "working_dir": "app"},
            0,
        )
        assert stage.action.tool == "trivy-0.50"
        assert stage.action.working_dir == "app"
        assert stage.action.description.startswith("Filesystem scan")

    def test_captures(self):
        stage = parse_stage(
            {
                "name": "build",
                "tool": "mvn",
                "captures": {"version": r"Version: (\S+)", "digest": {"file": "digest.txt"}},
            },
            0,
        )
        assert stage.action.captures["version"] == Capture(pattern=r"Version: (\S+)")
        assert stage.action.captures["digest"] == Capture(file="digest.txt")

    @pytest.mark.parametrize(
        "raw, message",
        [
            ("compile", "must be a mapping"),
            ({"tool": "mvn"}, "needs a 'name'"),
            ({"name": "x", "tool": "mvn", "when": "always"}, "unknown keys: when"),
            ({"name": "x", "uses": "teleport"}, "unknown binding 'teleport'"),
            ({"name": "x", "uses": "checkout", "with": {"branch": "main"}}, "bad parameters"),
            ({"name": "x"}, "needs either 'uses' or 'tool'"),
            ({"name": "x", "tool": "mvn", "args": "compile"}, "'args' must be a list"),
            ({"name": "x", "tool": "mvn", "success_exit_codes": ["0"]}, "list of integers"),
            ({"name": "x", "tool": "mvn", "captures": {"v": {}}}, "capture 'v'"),
            ({"name": "x", "tool": "mvn", "timeout": 0}, "timeout must be positive"),
            ({"name": "x", "tool": "mvn", "retries": "often"}, "invalid policy"),
        ],
    )
    def test_rejects_malformed_stage(self, raw, message):
        with pytest.raises(DefinitionError, match=message):
            parse_stage(raw, 0)

    @pytest.mark.parametrize("value", ["false", "no", 0, 1, None])
    def test_failure_policy_must_be_boolean(self, value):
        with pytest.raises(DefinitionError, match="continue_on_failure"):
            parse_stage({"name": "compile", "tool": "mvn", "continue_on_failure": value}, 0)

    def test_quoted_false_does_not_tolerate_failure(self):
        data = {"stages": [{"name": "a", "tool": "x", "continue_on_failure": "false"}]}
        with pytest.raises(DefinitionError):
            parse_definition(data, {})

    def test_failure_policy_defaults_to_fail_fast(self):
        stage = parse_stage({"name": "compile", "tool": "mvn"}, 0)
        assert stage.continue_on_failure is False

    def test_error_names_stage(self):
        with pytest.raises(DefinitionError) as exc_info:
            parse_stage({"name": "deploy", "tool": "docker", "colour": "red"}, 4)
        assert exc_info.value.stage == "deploy"
        assert "stage 'deploy'" in str(exc_info.value)


class TestParseDefinition:
    def test_requires_stages(self):
        with pytest.raises(DefinitionError, match="non-empty list"):
            parse_definition({"name": "empty", "stages": []}, {})

    def test_requires_mapping(self):
        with pytest.raises(DefinitionError):
            parse_definition(["not", "a", "mapping"], {})

    def test_duplicate_stage_names(self):
        data = {"stages": [{"name": "a", "tool": "x"}, {"name": "a", "tool": "y"}]}
        with pytest.raises(DefinitionError, match="duplicate"):
            parse_definition(data, {})

    def test_default_name_and_empty_environment(self):
        definition = parse_definition({"stages": [{"name": "a", "tool": "x"}]}, {})
        assert definition.name == "pipeline"
        assert definition.stage_names == ["a"]
        assert definition.post_run == []
        assert dict(definition.environment.tool_paths) == {}

    def test_unset_credential_source(self):
        data = {
            "environment": {"credentials": {"nexus": {"env": "NEXUS_PASSWORD"}}},
            "stages": [{"name": "a", "tool": "x"}],
        }
        with pytest.raises(ConfigurationError, match="NEXUS_PASSWORD"):
            parse_definition(data, {})

    def test_post_run(self):
        data = {
            "stages": [{"name": "a", "tool": "x"}],
            "post_run": [{"name": "prune", "uses": "image_prune"}],
        }
        definition = parse_definition(data, {})
        assert [s.name for s in definition.post_run] == ["prune"]
        assert definition.post_run[0].action.args == ("image", "prune", "-f")


class TestLoadPipeline:
    def test_loads_file(self, tmp_path):
        path = _write(tmp_path, MINIMAL)
        definition = load_pipeline(path, environ={"NEXUS_PASSWORD": "s3cr3t"})

        assert definition.name == "shop-api"
        assert definition.stage_names == ["compile"]
        env = definition.environment
        assert env.resolve_tool("mvn") == "/opt/maven/bin/mvn"
        assert env.resolve_credential("nexus").reveal() == "s3cr3t"
        assert env.resolve_variable("REPOSITORY_URL") == "http://nexus.internal/repository"

    def test_missing_file(self, tmp_path):
        with pytest.raises(DefinitionError, match="not found"):
            load_pipeline(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "stages: [unclosed")
        with pytest.raises(DefinitionError, match="invalid YAML"):
            load_pipeline(path, environ={})

    def test_errors_carry_path(self, tmp_path):
        path = _write(tmp_path, "stages:\n  - name: a\n")
        with pytest.raises(DefinitionError) as exc_info:
            load_pipeline(path, environ={})
        assert exc_info.value.path == str(path)
        assert str(exc_info.value).startswith(str(path))


class TestExampleDefinition:
    def test_example_parses(self):
        definition = load_pipeline(EXAMPLE, environ=EXAMPLE_ENVIRON)

        assert definition.stage_names == [
            "checkout",
            "compile",
            "filesystem-scan",
            "dependency-check",
            "static-analysis",
            "package",
            "publish",
            "image",
            "deploy",
        ]
        stages = {s.name: s for s in definition.stages}
        assert stages["filesystem-scan"].continue_on_failure
        assert stages["dependency-check"].timeout == 1800.0
        assert stages["publish"].retries == 2
        assert "version" in stages["compile"].action.captures
        assert [s.name for s in definition.post_run] == ["prune-images"]

    def test_example_passes_preflight(self):
        definition = load_pipeline(EXAMPLE, environ=EXAMPLE_ENVIRON)
        stages = definition.stages + definition.post_run
        assert PipelineOrchestrator.preflight_check(stages, definition.environment) == []
