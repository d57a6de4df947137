"""CLI entry point for the build pipeline runner."""

import argparse
import os
import signal
import sys

from dotenv import load_dotenv

from src.definition import load_pipeline
from src.environment import ConfigurationError
from src.logging_config import configure_logging
from src.orchestrator import PipelineOrchestrator, StageHook
from src.reports import ReportAggregator
from src.steps import CancellationToken

DEFAULT_DEFINITION = "pipeline.yaml"
DEFINITION_ERROR_EXIT_CODE = 2


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    overrides = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"--var expects NAME=VALUE, got {pair!r}")
        overrides[name] = value
    return overrides


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run a build pipeline definition")
    parser.add_argument(
        "--definition",
        default=None,
        help=f"Pipeline definition file (default: $PIPELINE_DEFINITION or {DEFAULT_DEFINITION})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (overrides LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--report",
        metavar="PATH",
        default=None,
        help="Write collected reports as JSON (default: $PIPELINE_REPORT_PATH)",
    )
    parser.add_argument(
        "--build-id",
        default=None,
        help="Identifier for this run (default: random)",
    )
    parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Override a definition variable (repeatable)",
    )
    args = parser.parse_args()
    configure_logging(level_override=args.log_level)

    try:
        overrides = _parse_vars(args.var)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    definition_path = args.definition or os.getenv("PIPELINE_DEFINITION", DEFAULT_DEFINITION)
    try:
        definition = load_pipeline(definition_path)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return DEFINITION_ERROR_EXIT_CODE

    env = definition.environment
    if overrides:
        env = env.with_variables(overrides)

    reports = ReportAggregator()
    token = CancellationToken()
    orchestrator = PipelineOrchestrator(
        reports=reports, cancel_token=token, build_id=args.build_id
    )
    for stage in definition.post_run:
        orchestrator.add_hook(StageHook(stage, env, reports=reports))

    previous = signal.signal(signal.SIGINT, lambda *_: token.cancel("interrupted"))
    try:
        result = orchestrator.run(definition.stages, env)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return DEFINITION_ERROR_EXIT_CODE
    finally:
        signal.signal(signal.SIGINT, previous)

    # Print summary
    print(f"\n--- Pipeline '{definition.name}' (run {result.id}) ---")
    for line in result.summary_lines():
        print(line)
    artifact = result.artifact
    if artifact is not None:
        print(f"\nArtifact: {artifact.version} -> {artifact.channel.value}")

    report_path = args.report or os.getenv("PIPELINE_REPORT_PATH")
    if report_path:
        reports.write_json(report_path)

    print(f"\nResult: {result.status.value.upper()}")
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
