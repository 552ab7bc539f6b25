"""Execution session manager: tracks in-flight runs, their controllers and tasks."""
import asyncio

from .run_control import RunController


class ExecutionSession:
    def __init__(self, execution_id: str, workflow_id: str, session_id: str | None = None):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        # WebSocket channel receiving this run's progress events
        self.session_id = session_id or execution_id
        self.controller = RunController()
        self.task: asyncio.Task | None = None

    def cancel(self, reason: str = "Execution cancelled by user") -> None:
        self.controller.cancel(reason)


_sessions: dict[str, ExecutionSession] = {}


def create_session(execution_id: str, workflow_id: str, session_id: str | None = None) -> ExecutionSession:
    session = ExecutionSession(execution_id, workflow_id, session_id)
    _sessions[execution_id] = session
    return session


def get_session(execution_id: str) -> ExecutionSession | None:
    return _sessions.get(execution_id)


def active_sessions() -> list[ExecutionSession]:
    return list(_sessions.values())


def remove_session(execution_id: str) -> None:
    _sessions.pop(execution_id, None)
