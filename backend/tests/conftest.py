"""Shared test fixtures for nodeflow backend tests."""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure nodeflow package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from nodeflow.engine.graph import Edge, Node, Workflow
from nodeflow.engine.steps import InlineStepRunner
from nodeflow.expressions.context import NodeInfo, create_expression_context
from nodeflow.expressions.engine import ExpressionEngine
from nodeflow.nodes.base import NodeRunContext

FIXED_NOW = datetime(2024, 3, 15, 12, 30, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session", autouse=True)
def register_nodes():
    """Discover and register all node types once per test session."""
    from nodeflow.nodes.registry import NodeRegistry
    NodeRegistry.discover("nodeflow.nodes")


@pytest.fixture
def engine():
    return ExpressionEngine(strict=True)


@pytest.fixture
def node_results():
    """Results of a trigger followed by an HTTP fetch."""
    return {
        "Trigger": {"userId": 7, "tags": ["new", "vip"]},
        "Fetch": {
            "status": 200,
            "body": {
                "items": [
                    {"id": 1, "price": 10, "tags": ["a", "b"]},
                    {"id": 2, "price": 25.5, "tags": ["c"]},
                ],
                "user": {"name": "Ada", "age": 36, "first name": "Ada"},
            },
        },
    }


@pytest.fixture
def node_infos():
    return [
        NodeInfo(id="t1", name="Trigger", type="MANUAL_TRIGGER"),
        NodeInfo(id="h1", name="Fetch", type="HTTP_REQUEST"),
        NodeInfo(id="c1", name="Current", type="IF_CONDITION"),
    ]


@pytest.fixture
def context(node_results, node_infos):
    return create_expression_context(
        node_results,
        nodes=node_infos,
        workflow_id="wf-1",
        workflow_name="Orders",
        execution_id="exec-1",
        execution_started_at=FIXED_NOW,
        env={"REGION": "eu"},
        current_node_id="c1",
        now=FIXED_NOW,
    )


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def step_runner(recording_sleep):
    return InlineStepRunner(sleep=recording_sleep, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_run_ctx(engine, context, step_runner):
    """Build a NodeRunContext for calling an executor directly."""
    def factory(node_type, raw_config=None, config=None, node_id="n1", **kwargs):
        raw_config = raw_config or {}
        node = Node(id=node_id, node_type=node_type, config=raw_config)
        return NodeRunContext(
            node=node,
            config=config if config is not None else dict(raw_config),
            node_results=kwargs.pop("node_results", {}),
            execution_id="exec-1",
            workflow_id=kwargs.pop("workflow_id", "wf-1"),
            step=kwargs.pop("step", step_runner),
            engine=engine,
            expression_context=context,
            **kwargs,
        )
    return factory


def make_workflow(nodes, edges, workflow_id="wf-1", name="Test Workflow", owner_id=None):
    """Workflow from ``(id, type, config)`` tuples and ``(source, target[, handle])`` tuples."""
    return Workflow(
        id=workflow_id,
        name=name,
        nodes=[Node(id=nid, node_type=ntype, config=dict(config)) for nid, ntype, config in nodes],
        edges=[
            Edge(source_node=e[0], target_node=e[1], source_handle=e[2] if len(e) > 2 else "main",
                 id=f"e{i}")
            for i, e in enumerate(edges)
        ],
        owner_id=owner_id,
    )


@pytest.fixture
def build_workflow():
    return make_workflow


@pytest.fixture
def linear_workflow():
    """Manual trigger -> If -> Wait."""
    return make_workflow(
        nodes=[
            ("trigger", "MANUAL_TRIGGER", {"name": "Trigger"}),
            ("check", "IF_CONDITION", {"name": "Check", "condition": "{{ json.Trigger.amount > 100 }}"}),
            ("pause", "WAIT", {"name": "Pause", "mode": "duration",
                               "duration": {"value": 2, "unit": "seconds"}}),
        ],
        edges=[("trigger", "check"), ("check", "pause", "true")],
    )
