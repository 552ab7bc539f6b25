"""Thread-safe cancellation signal for a running workflow."""
import threading
from enum import Enum


class RunState(str, Enum):
    RUNNING = "running"
    CANCELLED = "cancelled"


class RunController:
    """Lets another task or thread stop a run before its next node starts."""

    def __init__(self):
        self._state = RunState.RUNNING
        self._lock = threading.Lock()
        self._reason: str | None = None

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def reason(self) -> str | None:
        with self._lock:
            return self._reason

    @property
    def cancelled(self) -> bool:
        return self.state == RunState.CANCELLED

    def cancel(self, reason: str = "Execution cancelled"):
        with self._lock:
            if self._state == RunState.RUNNING:
                self._state = RunState.CANCELLED
                self._reason = reason
