"""Evaluation context: the bindings an expression can see while a node runs."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from ..engine.graph import BranchHistory
from .functions import iso

DEFAULT_WORKFLOW_NAME = "Untitled Workflow"


def is_reserved_key(key: str) -> bool:
    return key.startswith("__")


@dataclass(frozen=True)
class NodeInfo:
    id: str
    name: str
    type: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "type": self.type}


@dataclass(frozen=True)
class ExpressionContext:
    """Read-only snapshot handed to the evaluator for one node."""

    json: dict[str, Any]
    input: Any
    nodes: dict[str, dict[str, str]]
    workflow: dict[str, Any]
    execution: dict[str, Any]
    env: dict[str, str]
    now: int
    today: str
    branch: dict[str, Any]
    node_lookup: Callable[[str], Any] = field(repr=False, compare=False, default=lambda name: None)

    def bindings(self) -> dict[str, Any]:
        """The input document: every name here is reachable as a root field."""
        return {
            "json": self.json,
            "input": self.input,
            "nodes": self.nodes,
            "workflow": self.workflow,
            "execution": self.execution,
            "env": self.env,
            "now": self.now,
            "today": self.today,
            "branch": self.branch,
        }

    def variables(self) -> dict[str, Any]:
        """``$`` variables. Functions and variables share one namespace, so the
        time snapshot is exposed as ``$now()``, ``$millis()`` and ``$today()``
        rather than as plain values."""
        variables = self.bindings()
        del variables["now"], variables["today"]
        moment = datetime.fromtimestamp(self.now / 1000, tz=timezone.utc)
        variables["node"] = self.node_lookup
        variables["now"] = lambda: iso(moment)
        variables["millis"] = lambda: self.now
        variables["today"] = lambda: self.today
        return variables


def _resolve_input(
    node_results: Mapping[str, Any],
    node_order: list[NodeInfo],
    current_node_id: str | None,
) -> Any:
    if current_node_id is not None:
        ids = [n.id for n in node_order]
        if current_node_id in ids:
            position = ids.index(current_node_id)
            for info in reversed(node_order[:position]):
                for key in (info.name, info.id):
                    if key and key in node_results:
                        return node_results[key]
            return {}

    for key in reversed(list(node_results)):
        if not is_reserved_key(key):
            return node_results[key]
    return {}


def _to_plain(value: Any) -> Any:
    """Branch decisions as plain dicts so paths can reach into them."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def create_expression_context(
    node_results: Mapping[str, Any],
    *,
    nodes: list[NodeInfo] | None = None,
    workflow_id: str = "",
    workflow_name: str | None = None,
    execution_id: str = "",
    execution_started_at: datetime | None = None,
    env: Mapping[str, str] | None = None,
    current_node_id: str | None = None,
    branch_history: BranchHistory | None = None,
    now: datetime | None = None,
) -> ExpressionContext:
    """Build the context for one node.

    ``nodes`` is the node metadata in execution order; the ``input`` binding
    is the result of the nearest node before ``current_node_id`` in that
    order. Without a current node it falls back to the most recently added
    entry of ``node_results``.
    """
    nodes = nodes or []
    moment = now or datetime.now(timezone.utc)
    started = execution_started_at or moment

    visible = {k: v for k, v in node_results.items() if not is_reserved_key(k)}
    by_name = {info.name: info.to_dict() for info in nodes}

    history = branch_history or BranchHistory()
    last = history.last
    branch = {
        "last": _to_plain(last) if last is not None else None,
        "all": {node_id: _to_plain(d) for node_id, d in history.all().items()},
    }

    def node_lookup(name: str) -> dict[str, str] | None:
        if not isinstance(name, str):
            return None
        return by_name.get(name)

    return ExpressionContext(
        json=visible,
        input=_resolve_input(node_results, nodes, current_node_id),
        nodes=by_name,
        workflow={
            "id": workflow_id,
            "name": workflow_name or DEFAULT_WORKFLOW_NAME,
        },
        execution={
            "id": execution_id,
            "startedAt": started.isoformat(),
        },
        env=dict(env or {}),
        now=int(moment.timestamp() * 1000),
        today=moment.astimezone(timezone.utc).strftime("%Y-%m-%d"),
        branch=branch,
        node_lookup=node_lookup,
    )
