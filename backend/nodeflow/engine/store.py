"""Persistence collaborators: workflow definitions on disk, runs in memory."""
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Protocol

from .graph import Execution, Workflow

logger = logging.getLogger(__name__)


class WorkflowStore(Protocol):
    def get_workflow(self, workflow_id: str) -> Workflow | None:
        ...


class ExecutionStore(Protocol):
    def save(self, execution: Execution) -> None:
        ...

    def get(self, execution_id: str) -> Execution | None:
        ...


class JsonWorkflowStore:
    """One ``<id>.json`` file per workflow under ``directory``."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, workflow_id: str) -> Path:
        # Ids come from URLs; keep them inside the store directory
        return self.directory / f"{Path(workflow_id).name}.json"

    def save(self, data: dict[str, Any]) -> str:
        if not data.get("id"):
            data["id"] = str(uuid.uuid4())
        self._path(data["id"]).write_text(json.dumps(data, indent=2, default=str))
        return data["id"]

    def load(self, workflow_id: str) -> dict[str, Any] | None:
        path = self._path(workflow_id)
        if not path.exists():
            return None
        return json.loads(path.read_text())

    def list(self) -> dict[str, dict[str, Any]]:
        result = {}
        for path in sorted(self.directory.glob("*.json")):
            try:
                data = json.loads(path.read_text())
                wid = data["id"]
            except (OSError, ValueError, KeyError):
                logger.warning("Skipping unreadable workflow file %s", path)
                continue
            result[wid] = {
                "id": wid,
                "name": data.get("name", ""),
                "description": data.get("description", ""),
            }
        return result

    def delete(self, workflow_id: str) -> bool:
        path = self._path(workflow_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        data = self.load(workflow_id)
        if data is None:
            return None
        return Workflow.from_dict(data)


class InMemoryExecutionStore:
    """Keeps the most recent runs, evicting the oldest once ``max_size`` is reached."""

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._executions: dict[str, Execution] = {}

    def save(self, execution: Execution) -> None:
        if execution.id not in self._executions:
            while self._executions and len(self._executions) >= self.max_size:
                self._executions.pop(next(iter(self._executions)))
        self._executions[execution.id] = execution

    def get(self, execution_id: str) -> Execution | None:
        return self._executions.get(execution_id)

    def list(self, workflow_id: str | None = None) -> list[Execution]:
        runs = list(self._executions.values())
        if workflow_id is not None:
            runs = [r for r in runs if r.workflow_id == workflow_id]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

    def clear(self) -> None:
        self._executions.clear()

    def __len__(self) -> int:
        return len(self._executions)
