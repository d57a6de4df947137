"""StepRunner - runs external processes with timeout and cancellation."""

import logging
import os
import signal
import subprocess
import time
from typing import Optional

from .cancellation import CancellationToken
from .models import (
    CANCELLED_EXIT_CODE,
    COMMAND_NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    StepInvocation,
    StepOutcome,
)

logger = logging.getLogger(__name__)


class StepRunner:
    """Runs one external process to completion and reports the outcome.

    The caller blocks until the process exits. While waiting, the runner
    polls the cancellation token and the deadline; either one stops the
    process and its children with SIGTERM, then SIGKILL after a grace period.

    Never raises for process failures: a command that cannot be started
    becomes an outcome with exit code 127 and an error message.
    """

    DEFAULT_POLL_INTERVAL = 0.1
    DEFAULT_KILL_GRACE = 5.0

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        kill_grace: float = DEFAULT_KILL_GRACE,
    ):
        self._poll_interval = poll_interval
        self._kill_grace = kill_grace

    def run(
        self,
        invocation: StepInvocation,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> StepOutcome:
        """Run an invocation and wait for it.

        Args:
            invocation: Rendered command, working directory and env overlay.
            timeout: Seconds before the process is stopped. None waits forever.
            cancel_token: Token whose cancellation stops the process.

        Returns:
            StepOutcome with exit code and captured output.
        """
        if cancel_token is not None and cancel_token.is_cancelled:
            return StepOutcome(
                exit_code=CANCELLED_EXIT_CODE,
                cancelled=True,
                error=f"Cancelled before start: {cancel_token.reason}",
            )

        env = os.environ.copy()
        env.update(invocation.env)

        start = time.monotonic()
        logger.debug("Starting: %s", invocation.display)
        try:
            proc = subprocess.Popen(
                list(invocation.argv),
                cwd=invocation.cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            logger.error("Could not start %s: %s", invocation.argv[0], e)
            return StepOutcome(
                exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
                duration_seconds=round(time.monotonic() - start, 2),
                error=f"Could not start {invocation.argv[0]}: {e}",
            )

        deadline = start + timeout if timeout is not None else None
        timed_out = False
        cancelled = False

        while True:
            wait = self._poll_interval
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            try:
                stdout, stderr = proc.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                if cancel_token is not None and cancel_token.is_cancelled:
                    cancelled = True
                elif deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                else:
                    continue
                stdout, stderr = self._stop(proc)
                break

        duration = round(time.monotonic() - start, 2)
        if timed_out:
            logger.warning("Timed out after %ss: %s", timeout, invocation.display)
            return StepOutcome(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=stdout or "",
                stderr=stderr or "",
                duration_seconds=duration,
                timed_out=True,
            )
        if cancelled:
            logger.warning("Cancelled: %s", invocation.display)
            return StepOutcome(
                exit_code=CANCELLED_EXIT_CODE,
                stdout=stdout or "",
                stderr=stderr or "",
                duration_seconds=duration,
                cancelled=True,
                error=cancel_token.reason,
            )

        return StepOutcome(
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_seconds=duration,
        )

    @staticmethod
    def _signal_group(proc: subprocess.Popen, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass

    def _stop(self, proc: subprocess.Popen) -> tuple[str, str]:
        """Terminate the step's process group, escalating to kill.

        The step runs in its own session, so wrapper scripts and the
        children they spawn are stopped together.
        """
        self._signal_group(proc, signal.SIGTERM)
        try:
            return proc.communicate(timeout=self._kill_grace)
        except subprocess.TimeoutExpired:
            logger.warning("Process group %d still running after SIGTERM, killing", proc.pid)
        self._signal_group(proc, signal.SIGKILL)
        try:
            return proc.communicate(timeout=self._kill_grace)
        except subprocess.TimeoutExpired:
            # A descendant left the group and still holds the output pipes
            logger.error(
                "Output pipes of process %d still open after kill; dropping output", proc.pid
            )
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()
            proc.wait(timeout=self._kill_grace)
            return "", ""
