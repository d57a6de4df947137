"""Cancellation token shared between the controller and running steps."""

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    Set from a signal handler or another thread; polled by the step
    runner while it waits on a process.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout elapses."""
        return self._event.wait(timeout)
