"""Data models for external step invocation."""

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

# Exit code conventions shared with coreutils timeout and POSIX shells
TIMEOUT_EXIT_CODE = 124
COMMAND_NOT_FOUND_EXIT_CODE = 127
CANCELLED_EXIT_CODE = 130


@dataclass(frozen=True)
class Capture:
    """How to read one piece of build metadata after a step runs.

    Exactly one of pattern or file is set.

    Attributes:
        pattern: Regex searched in stdout (multiline). Group 1 is used
            when the pattern has groups, otherwise the whole match.
        file: Path whose stripped contents become the value.
    """

    pattern: Optional[str] = None
    file: Optional[str] = None

    def __post_init__(self):
        if (self.pattern is None) == (self.file is None):
            raise ValueError("Capture needs exactly one of 'pattern' or 'file'")


@dataclass(frozen=True)
class StepOutcome:
    """What happened when an external process ran.

    Attributes:
        exit_code: Process exit code, or one of the sentinel codes.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_seconds: Wall time of the invocation.
        timed_out: The process was stopped for exceeding its timeout.
        cancelled: The process was stopped by a cancellation request.
        error: Why the process could not be started, if it wasn't.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def output(self) -> str:
        """Stdout followed by stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


SuccessPredicate = Callable[[StepOutcome], bool]


@dataclass(frozen=True)
class ExternalStep:
    """Declaration of an external tool invocation.

    Argument, environment and report path strings are templates rendered
    just before the call. Available placeholders are {vars[NAME]},
    {meta[KEY]}, {build_id} and {channel}; literal braces are doubled.

    Attributes:
        tool: Tool name resolved through the EnvironmentContext.
        args: Argument templates passed after the executable.
        working_dir: Directory to run in. Defaults to the current one.
        env: Extra environment variables (templates).
        credentials: Environment variable name to credential id.
        success_exit_codes: Exit codes counted as success.
        success_predicate: Overrides success_exit_codes when set.
        reports: Report kind to file path, collected after the call.
        captures: Metadata key to Capture, read after a successful call.
        description: Human-readable summary.
    """

    tool: str
    args: tuple[str, ...] = ()
    working_dir: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    credentials: Mapping[str, str] = field(default_factory=dict)
    success_exit_codes: tuple[int, ...] = (0,)
    success_predicate: Optional[SuccessPredicate] = None
    reports: Mapping[str, str] = field(default_factory=dict)
    captures: Mapping[str, Capture] = field(default_factory=dict)
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize the declaration (without the predicate)."""
        return {
            "tool": self.tool,
            "args": list(self.args),
            "working_dir": self.working_dir,
            "env": dict(self.env),
            "credentials": dict(self.credentials),
            "success_exit_codes": list(self.success_exit_codes),
            "reports": dict(self.reports),
            "description": self.description,
        }


@dataclass(frozen=True)
class StepInvocation:
    """A fully rendered command ready to run.

    The environment overlay may hold revealed secrets and is kept out
    of repr.
    """

    argv: tuple[str, ...]
    cwd: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict, repr=False)

    @property
    def display(self) -> str:
        """Command line for logs."""
        return " ".join(self.argv)
