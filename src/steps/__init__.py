"""External step abstraction for delegated pipeline work.

Public API:
    - ExternalStep: Declaration of a tool invocation
    - StepInvocation: Rendered command ready to run
    - StepOutcome: Exit code and captured output
    - StepRunner: Runs invocations with timeout and cancellation
    - CancellationToken: One-way cancellation flag
    - Capture: Metadata extraction rule
    - BINDINGS: Catalog of ready-made steps
"""

from .cancellation import CancellationToken
from .catalog import BINDINGS
from .models import (
    CANCELLED_EXIT_CODE,
    COMMAND_NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    Capture,
    ExternalStep,
    StepInvocation,
    StepOutcome,
)
from .runner import StepRunner

__all__ = [
    "ExternalStep",
    "StepInvocation",
    "StepOutcome",
    "StepRunner",
    "CancellationToken",
    "Capture",
    "BINDINGS",
    "TIMEOUT_EXIT_CODE",
    "COMMAND_NOT_FOUND_EXIT_CODE",
    "CANCELLED_EXIT_CODE",
]
