"""Loads pipeline definitions from YAML.

A definition looks like:

    name: shop-api
    environment:
      tools:
        mvn: /opt/maven/bin/mvn
      credentials:
        repository-password: {env: NEXUS_PASSWORD}
      variables:
        REPOSITORY_URL: https://nexus.example.com/repository
    stages:
      - name: compile
        tool: mvn
        args: [-B, compile]
      - name: scan
        uses: filesystem_scan
        with: {severity: CRITICAL}
        continue_on_failure: true
    post_run:
      - name: prune
        uses: image_prune
"""

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from src.environment import ConfigurationError, EnvironmentContext
from src.executor import Stage
from src.steps import BINDINGS, Capture, ExternalStep

from .exceptions import DefinitionError
from .models import PipelineDefinition

logger = logging.getLogger(__name__)

STAGE_KEYS = {"name", "uses", "with", "continue_on_failure", "timeout", "retries"}
STEP_KEYS = {
    "tool",
    "args",
    "working_dir",
    "env",
    "credentials",
    "success_exit_codes",
    "reports",
    "captures",
    "description",
}


def _mapping(value: Any, what: str, stage: Optional[str] = None) -> dict:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise DefinitionError(f"'{what}' must be a mapping", stage=stage)
    return dict(value)


def _parse_captures(raw: Any, stage: str) -> dict[str, Capture]:
    captures = {}
    for key, rule in _mapping(raw, "captures", stage).items():
        if isinstance(rule, str):
            rule = {"pattern": rule}
        if not isinstance(rule, Mapping):
            raise DefinitionError(f"capture '{key}' must be a pattern or mapping", stage=stage)
        try:
            captures[key] = Capture(pattern=rule.get("pattern"), file=rule.get("file"))
        except ValueError as e:
            raise DefinitionError(f"capture '{key}': {e}", stage=stage) from e
    return captures


def _step_fields(raw: Mapping[str, Any], name: str) -> dict[str, Any]:
    """Convert raw step keys into ExternalStep keyword arguments."""
    fields: dict[str, Any] = {}
    if "tool" in raw:
        fields["tool"] = str(raw["tool"])
    if "args" in raw:
        args = raw["args"] or []
        if not isinstance(args, list):
            raise DefinitionError("'args' must be a list", stage=name)
        fields["args"] = tuple(str(a) for a in args)
    if "working_dir" in raw:
        fields["working_dir"] = str(raw["working_dir"])
    for key in ("env", "credentials", "reports"):
        if key in raw:
            fields[key] = {str(k): str(v) for k, v in _mapping(raw[key], key, name).items()}
    if "success_exit_codes" in raw:
        codes = raw["success_exit_codes"]
        if not isinstance(codes, list) or not all(isinstance(c, int) for c in codes):
            raise DefinitionError("'success_exit_codes' must be a list of integers", stage=name)
        fields["success_exit_codes"] = tuple(codes)
    if "captures" in raw:
        fields["captures"] = _parse_captures(raw["captures"], name)
    if "description" in raw:
        fields["description"] = str(raw["description"])
    return fields


def parse_stage(raw: Any, index: int) -> Stage:
    """Build a Stage from one entry of a definition's stage list.

    Args:
        raw: Parsed YAML mapping for the stage.
        index: Position in the list, used in error messages.

    Raises:
        DefinitionError: If the entry is malformed.
    """
    if not isinstance(raw, Mapping):
        raise DefinitionError(f"stage #{index + 1} must be a mapping")
    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise DefinitionError(f"stage #{index + 1} needs a 'name'")

    unknown = set(raw) - STAGE_KEYS - STEP_KEYS
    if unknown:
        raise DefinitionError(f"unknown keys: {', '.join(sorted(unknown))}", stage=name)

    fields = _step_fields(raw, name)
    if "uses" in raw:
        factory = BINDINGS.get(raw["uses"])
        if factory is None:
            raise DefinitionError(
                f"unknown binding '{raw['uses']}' (known: {', '.join(sorted(BINDINGS))})",
                stage=name,
            )
        try:
            action = factory(**_mapping(raw.get("with"), "with", name))
        except TypeError as e:
            raise DefinitionError(f"bad parameters for '{raw['uses']}': {e}", stage=name) from e
        action = dataclasses.replace(action, **fields)
    else:
        if "tool" not in fields:
            raise DefinitionError("needs either 'uses' or 'tool'", stage=name)
        action = ExternalStep(**fields)

    continue_on_failure = raw.get("continue_on_failure", False)
    if not isinstance(continue_on_failure, bool):
        raise DefinitionError(
            f"'continue_on_failure' must be true or false, got {continue_on_failure!r}",
            stage=name,
        )

    try:
        return Stage(
            name=name,
            action=action,
            continue_on_failure=continue_on_failure,
            timeout=float(raw["timeout"]) if raw.get("timeout") is not None else None,
            retries=int(raw.get("retries", 0)),
        )
    except (TypeError, ValueError) as e:
        raise DefinitionError(f"invalid policy: {e}", stage=name) from e
    except ConfigurationError as e:
        raise DefinitionError(str(e), stage=name) from e


def parse_definition(
    data: Any, environ: Optional[Mapping[str, str]] = None
) -> PipelineDefinition:
    """Build a PipelineDefinition from parsed YAML data.

    Args:
        data: Top-level mapping from the definition file.
        environ: Environment for credential sources. Defaults to os.environ.
    """
    if not isinstance(data, Mapping):
        raise DefinitionError("definition must be a mapping")

    raw_stages = data.get("stages")
    if not isinstance(raw_stages, list) or not raw_stages:
        raise DefinitionError("'stages' must be a non-empty list")

    stages = [parse_stage(raw, i) for i, raw in enumerate(raw_stages)]
    seen: set[str] = set()
    for stage in stages:
        if stage.name in seen:
            raise DefinitionError("duplicate stage name", stage=stage.name)
        seen.add(stage.name)

    post_run = [parse_stage(raw, i) for i, raw in enumerate(data.get("post_run") or [])]

    env_section = _mapping(data.get("environment"), "environment")
    environment = EnvironmentContext.from_sources(
        tool_paths=_mapping(env_section.get("tools"), "environment.tools"),
        credential_sources=_mapping(env_section.get("credentials"), "environment.credentials"),
        variables=_mapping(env_section.get("variables"), "environment.variables"),
        environ=os.environ if environ is None else environ,
    )

    return PipelineDefinition(
        name=str(data.get("name") or "pipeline"),
        stages=stages,
        environment=environment,
        post_run=post_run,
    )


def load_pipeline(
    path: str | Path, environ: Optional[Mapping[str, str]] = None
) -> PipelineDefinition:
    """Load a pipeline definition file.

    Raises:
        DefinitionError: If the file is missing, not YAML, or malformed.
        ConfigurationError: If a credential source variable is unset.
    """
    path = Path(path)
    if not path.is_file():
        raise DefinitionError("definition file not found", path=str(path))

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DefinitionError(f"invalid YAML: {e}", path=str(path)) from e

    try:
        definition = parse_definition(data, environ)
    except DefinitionError as e:
        if e.path is None:
            e.path = str(path)
            e.args = (f"{path}: {e}",)
        raise

    logger.info(
        "Loaded pipeline '%s' from %s: %d stages, %d post-run steps",
        definition.name, path, len(definition.stages), len(definition.post_run),
    )
    return definition
