"""Graph and run data structures for the execution engine."""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


@dataclass
class Edge:
    source_node: str
    target_node: str
    source_handle: str = "main"  # opaque output label, e.g. "true" / "case-1"
    target_handle: str = "main"
    id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Edge":
        """Accept the edge shapes used by the editor and the persistence layer."""
        source = data.get("source_node") or data.get("source") or data.get("fromNodeId")
        target = data.get("target_node") or data.get("target") or data.get("toNodeId")
        return cls(
            source_node=source or "",
            target_node=target or "",
            source_handle=data.get("source_handle") or data.get("sourceHandle") or data.get("fromOutput") or "main",
            target_handle=data.get("target_handle") or data.get("targetHandle") or data.get("toInput") or "main",
            id=data.get("id") or "",
        )


@dataclass
class Node:
    id: str
    node_type: str
    name: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    position: dict[str, float] = field(default_factory=dict)  # editor only

    @property
    def result_key(self) -> str:
        """Name other nodes use to reference this node's output."""
        configured = self.config.get("name")
        if isinstance(configured, str) and configured.strip():
            return configured
        return self.name or self.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Node":
        return cls(
            id=data["id"],
            node_type=data.get("node_type") or data.get("type") or "",
            name=data.get("name") or "",
            config=dict(data.get("config") or data.get("data") or {}),
            position=dict(data.get("position") or {}),
        )


@dataclass
class Workflow:
    id: str
    name: str = ""
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    owner_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workflow":
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            nodes=[Node.from_dict(n) for n in data.get("nodes", [])],
            edges=[Edge.from_dict(e) for e in data.get("edges", [])],
            owner_id=data.get("owner_id"),
        )


class ExecutionStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ExecutionStep:
    node_id: str
    node_name: str
    node_type: str
    input: Any = None
    status: StepStatus = StepStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    output: Any = None
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class Execution:
    workflow_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None
    error_type: str | None = None
    steps: list[ExecutionStep] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.status in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


@dataclass
class Iteration:
    index: int
    total: int
    item: Any = None


@dataclass
class BranchDecision:
    """Which outgoing branch a control-flow node took."""

    branch: str
    data: Any = None
    iteration: Iteration | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BranchDecision":
        iteration = data.get("iteration")
        return cls(
            branch=data["branch"],
            data=data.get("data"),
            iteration=Iteration(**iteration) if iteration else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"branch": self.branch}
        if self.data is not None:
            result["data"] = self.data
        if self.iteration is not None:
            result["iteration"] = {
                "index": self.iteration.index,
                "total": self.iteration.total,
                "item": self.iteration.item,
            }
        return result


class BranchHistory:
    """Run-scoped record of branch decisions, kept apart from node results."""

    def __init__(self):
        self._decisions: dict[str, BranchDecision] = {}
        self._last: BranchDecision | None = None

    def record(self, node_id: str, decision: BranchDecision) -> None:
        self._decisions[node_id] = decision
        self._last = decision

    @property
    def last(self) -> BranchDecision | None:
        return self._last

    def get(self, node_id: str) -> BranchDecision | None:
        return self._decisions.get(node_id)

    def all(self) -> dict[str, BranchDecision]:
        return dict(self._decisions)

    def __len__(self) -> int:
        return len(self._decisions)
