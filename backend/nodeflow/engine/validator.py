"""Graph validation: cycle detection, topological ordering, structural checks."""
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import GraphCycleError, InvalidConnectionError, MissingTriggerError
from .graph import Edge, Node


@dataclass
class TopologicalOrder:
    order: list[str]
    has_cycle: bool
    cycles: list[list[str]] = field(default_factory=list)


@dataclass
class ConnectionCheck:
    is_valid: bool
    error: str | None = None

    def raise_for_error(self) -> None:
        if not self.is_valid:
            raise InvalidConnectionError(self.error or "Invalid connection")


@dataclass
class ValidationIssue:
    type: str
    message: str
    node_ids: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise the exception matching the first structural error, if any."""
        for issue in self.errors:
            if issue.type == "cycle":
                cycles = [i.node_ids for i in self.errors if i.type == "cycle"]
                raise GraphCycleError(cycles)
            if issue.type == "missing_trigger":
                raise MissingTriggerError(issue.message)


def _adjacency(nodes: Iterable[Node], edges: Iterable[Edge]) -> dict[str, list[str]]:
    # One entry per edge, not per unique successor; edges to unknown ids are ignored
    adj: dict[str, list[str]] = {n.id: [] for n in nodes}
    for edge in edges:
        if edge.source_node in adj and edge.target_node in adj:
            adj[edge.source_node].append(edge.target_node)
    return adj


def detect_cycles(nodes: list[Node], edges: list[Edge]) -> list[list[str]]:
    """Depth-first search collecting every cycle closed against the current path.

    Iterative with an explicit stack of successor iterators, so long chains
    don't hit the interpreter's recursion limit.
    """
    adj = _adjacency(nodes, edges)
    visited: set[str] = set()
    on_stack: set[str] = set()
    cycles: list[list[str]] = []

    for node in nodes:
        if node.id in visited:
            continue
        visited.add(node.id)
        on_stack.add(node.id)
        path = [node.id]
        stack = [iter(adj[node.id])]
        while stack:
            succ = next(stack[-1], None)
            if succ is None:
                stack.pop()
                on_stack.discard(path.pop())
            elif succ in on_stack:
                cycles.append(path[path.index(succ):] + [succ])
            elif succ not in visited:
                visited.add(succ)
                on_stack.add(succ)
                path.append(succ)
                stack.append(iter(adj[succ]))
    return cycles


def topological_sort(nodes: list[Node], edges: list[Edge]) -> TopologicalOrder:
    """Kahn's algorithm returning node IDs in execution order."""
    adj = _adjacency(nodes, edges)
    in_degree: dict[str, int] = {n.id: 0 for n in nodes}
    for succs in adj.values():
        for succ in succs:
            in_degree[succ] += 1

    queue = deque(nid for nid, deg in in_degree.items() if deg == 0)
    order: list[str] = []
    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for succ in adj[node_id]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                queue.append(succ)

    has_cycle = len(order) != len(in_degree)
    cycles = detect_cycles(nodes, edges) if has_cycle else []
    return TopologicalOrder(order=order, has_cycle=has_cycle, cycles=cycles)


def topological_sort_nodes(nodes: list[Node], edges: list[Edge]) -> list[Node]:
    """Return nodes in execution order, raising GraphCycleError on a cycle."""
    result = topological_sort(nodes, edges)
    if result.has_cycle:
        raise GraphCycleError(result.cycles)
    by_id = {n.id: n for n in nodes}
    return [by_id[nid] for nid in result.order]


def would_create_cycle(nodes: list[Node], edges: list[Edge], candidate: Edge) -> bool:
    return bool(detect_cycles(nodes, [*edges, candidate]))


def validate_connection(nodes: list[Node], edges: list[Edge], candidate: Edge) -> ConnectionCheck:
    """Check a new edge before it is persisted."""
    if candidate.source_node == candidate.target_node:
        return ConnectionCheck(False, "Cannot connect a node to itself")

    for edge in edges:
        if edge.source_node == candidate.source_node and edge.target_node == candidate.target_node:
            return ConnectionCheck(False, "Connection already exists between these nodes")

    if would_create_cycle(nodes, edges, candidate):
        return ConnectionCheck(False, "This connection would create a cycle in the workflow")

    return ConnectionCheck(True)


def is_trigger(node: Node) -> bool:
    return "trigger" in node.node_type.lower()


def _reachable_from(start: str, adj: dict[str, list[str]]) -> set[str]:
    reachable: set[str] = set()
    queue = deque([start])
    while queue:
        current = queue.popleft()
        if current in reachable:
            continue
        reachable.add(current)
        queue.extend(adj.get(current, []))
    return reachable


def validate_workflow_graph(nodes: list[Node], edges: list[Edge]) -> ValidationResult:
    """Aggregate structural problems into errors (blocking) and warnings."""
    result = ValidationResult()

    sort = topological_sort(nodes, edges)
    for cycle in sort.cycles:
        result.errors.append(ValidationIssue(
            type="cycle",
            message=f"Cycle detected: {' → '.join(cycle)}",
            node_ids=cycle,
        ))

    triggers = [n for n in nodes if is_trigger(n)]
    if not triggers:
        result.errors.append(ValidationIssue(
            type="missing_trigger",
            message="Workflow must have at least one trigger node",
        ))
    elif len(triggers) > 1:
        result.warnings.append(ValidationIssue(
            type="multiple_triggers",
            message="Multiple trigger nodes detected. Only one will be used.",
            node_ids=[n.id for n in triggers],
        ))

    if len(nodes) > 1:
        connected = {e.source_node for e in edges} | {e.target_node for e in edges}
        orphaned = [n.id for n in nodes if n.id not in connected]
        if orphaned:
            result.warnings.append(ValidationIssue(
                type="orphaned_node",
                message=f"{len(orphaned)} node(s) are not connected to the workflow",
                node_ids=orphaned,
            ))

    if triggers:
        trigger_ids = {n.id for n in triggers}
        reachable = _reachable_from(triggers[0].id, _adjacency(nodes, edges))
        unreachable = [n.id for n in nodes if n.id not in reachable and n.id not in trigger_ids]
        if unreachable:
            result.warnings.append(ValidationIssue(
                type="unreachable_node",
                message=f"{len(unreachable)} node(s) cannot be reached from the trigger",
                node_ids=unreachable,
            ))

    missing = []
    for node in nodes:
        name = node.config.get("name")
        if not isinstance(name, str) or not name.strip():
            missing.append(node.id)
    if missing:
        result.warnings.append(ValidationIssue(
            type="missing_config",
            message=f"{len(missing)} node(s) are missing required configuration",
            node_ids=missing,
        ))

    return result
