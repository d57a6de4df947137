#!/usr/bin/env python3
"""Validate a pipeline definition without running any stage.

Loads the definition, checks that every tool path exists and is
executable, and that every tool, credential and variable a stage
refers to is bound.

Run from project root:
    python scripts/check_pipeline.py [pipeline.yaml]
"""

import os
import shutil
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent

sys.path.insert(0, str(PROJECT_ROOT))
from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")


def check_tools(tool_paths: dict[str, str]) -> list[str]:
    errors = []
    for name, path in tool_paths.items():
        if not (os.access(path, os.X_OK) or shutil.which(path)):
            errors.append(f"Tool '{name}' is not executable: {path}")
    return errors


def main() -> int:
    from src.definition import load_pipeline
    from src.environment import ConfigurationError
    from src.orchestrator import PipelineOrchestrator

    path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("PIPELINE_DEFINITION", "pipeline.yaml")
    print(f"Checking {path} ...\n")

    try:
        definition = load_pipeline(path)
    except ConfigurationError as e:
        print(f"  ✗ {e}")
        return 1

    env = definition.environment
    errors = check_tools(dict(env.tool_paths))
    errors += PipelineOrchestrator.preflight_check(
        [*definition.stages, *definition.post_run], env
    )

    if errors:
        for err in errors:
            print(f"  ✗ {err}")
        return 1

    for stage in definition.stages:
        policy = "continue on failure" if stage.continue_on_failure else "fail fast"
        print(f"  ✓ {stage.name}: {stage.action.tool} ({policy})")
    for stage in definition.post_run:
        print(f"  ✓ post-run {stage.name}: {stage.action.tool}")

    print(f"\nPipeline '{definition.name}' is ready to run.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
