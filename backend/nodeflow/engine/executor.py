"""Execution engine: run a workflow's nodes in topological order."""
import logging
import uuid
from typing import Any, Callable, Mapping

from ..credentials import CredentialResolver
from ..errors import GraphCycleError, WorkflowError
from ..expressions.context import NodeInfo, create_expression_context
from ..expressions.engine import ExpressionEngine
from ..nodes.base import EDITOR_ONLY_TYPES, BaseNode, NodeResult, NodeRunContext
from ..nodes.registry import NodeRegistry
from .graph import (
    BranchDecision, BranchHistory, Execution, ExecutionStatus, ExecutionStep,
    Node, StepStatus, Workflow, utcnow,
)
from .run_control import RunController
from .steps import InlineStepRunner, StepRunner
from .store import ExecutionStore
from .validator import topological_sort_nodes

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]


async def _invoke(node: BaseNode, ctx: NodeRunContext) -> dict[str, Any]:
    """Run one executor and flatten its result into a checkpointable dict."""
    result = await node.execute(ctx)
    if isinstance(result, NodeResult):
        output, decision = result.output, result.branch
    else:
        output, decision = result, None
    return {
        "output": output,
        "branch": decision.to_dict() if decision is not None else None,
        "warnings": list(ctx.warnings),
    }


def _finish(
    execution: Execution,
    status: ExecutionStatus,
    emit: ProgressCallback,
    store: ExecutionStore | None,
    *,
    error: str | None = None,
    error_type: str | None = None,
    result: Any = None,
) -> Execution:
    execution.status = status
    execution.completed_at = utcnow()
    execution.error = error
    execution.error_type = error_type
    execution.result = result
    if store is not None:
        store.save(execution)

    if status == ExecutionStatus.FAILED:
        logger.error("Execution %s failed: %s", execution.id, error)
        emit({
            "type": "execution_error",
            "execution_id": execution.id,
            "status": status.value,
            "error": error,
            "error_type": error_type,
        })
    else:
        logger.info("Execution %s finished with status %s", execution.id, status.value)
        emit({
            "type": "execution_complete",
            "execution_id": execution.id,
            "status": status.value,
            "result": result,
            "error": error,
        })
    return execution


async def execute_workflow(
    workflow: Workflow,
    *,
    initial_data: Mapping[str, Any] | None = None,
    step_runner: StepRunner | None = None,
    engine: ExpressionEngine | None = None,
    credentials: CredentialResolver | None = None,
    env: Mapping[str, str] | None = None,
    controller: RunController | None = None,
    store: ExecutionStore | None = None,
    progress_callback: ProgressCallback | None = None,
    execution_id: str | None = None,
) -> Execution:
    """Execute every node once in dependency order and return the finished run.

    Failures never propagate: a cycle, an unknown node type or an executor
    error ends the run as FAILED with the cause kept on the run and, for
    per-node errors, on that node's step.
    """
    step_runner = step_runner or InlineStepRunner()
    engine = engine or ExpressionEngine()

    def emit(event: dict[str, Any]) -> None:
        if progress_callback:
            progress_callback(event)

    execution = Execution(workflow_id=workflow.id, id=execution_id or str(uuid.uuid4()))
    execution.status = ExecutionStatus.RUNNING
    if store is not None:
        store.save(execution)
    logger.info("Starting execution %s of workflow %s", execution.id, workflow.id)
    emit({"type": "execution_start", "execution_id": execution.id, "workflow_id": workflow.id})

    try:
        ordered = topological_sort_nodes(workflow.nodes, workflow.edges)
    except GraphCycleError as exc:
        return _finish(execution, ExecutionStatus.FAILED, emit, store,
                       error=str(exc), error_type=type(exc).__name__)

    node_results: dict[str, Any] = dict(initial_data or {})
    history = BranchHistory()
    infos = [NodeInfo(id=n.id, name=n.result_key, type=n.node_type) for n in ordered]
    last_output: Any = None

    for node in ordered:
        if controller is not None and controller.cancelled:
            return _finish(execution, ExecutionStatus.CANCELLED, emit, store,
                           error=controller.reason, result=last_output)

        if node.node_type in EDITOR_ONLY_TYPES:
            logger.debug("Skipping editor-only node %s (%s)", node.id, node.node_type)
            continue

        step = ExecutionStep(
            node_id=node.id,
            node_name=node.result_key,
            node_type=node.node_type,
            input=node.config,
        )
        execution.steps.append(step)
        if store is not None:
            store.save(execution)
        emit(_node_status(execution, node, "loading"))
        logger.info("Dispatching node %s (%s)", node.id, node.node_type)

        try:
            payload = await _dispatch(
                node, execution, workflow, node_results, history, infos,
                step, step_runner, engine, credentials, env, initial_data,
            )
        except Exception as exc:
            if not isinstance(exc, WorkflowError):
                logger.exception("Node %s raised an unexpected error", node.id)
            step.status = StepStatus.FAILED
            step.error = str(exc)
            step.completed_at = utcnow()
            emit(_node_status(execution, node, "error", error=str(exc)))
            return _finish(execution, ExecutionStatus.FAILED, emit, store,
                           error=str(exc), error_type=type(exc).__name__)

        output = payload["output"]
        if payload.get("branch") is not None:
            history.record(node.id, BranchDecision.from_dict(payload["branch"]))
        node_results[node.result_key] = output
        last_output = output

        step.output = output
        step.warnings.extend(payload.get("warnings") or [])
        step.status = StepStatus.COMPLETED
        step.completed_at = utcnow()
        if store is not None:
            store.save(execution)
        emit(_node_status(execution, node, "success"))

    return _finish(execution, ExecutionStatus.COMPLETED, emit, store, result=last_output)


async def _dispatch(
    node: Node,
    execution: Execution,
    workflow: Workflow,
    node_results: dict[str, Any],
    history: BranchHistory,
    infos: list[NodeInfo],
    step: ExecutionStep,
    step_runner: StepRunner,
    engine: ExpressionEngine,
    credentials: CredentialResolver | None,
    env: Mapping[str, str] | None,
    initial_data: Mapping[str, Any] | None,
) -> dict[str, Any]:
    context = create_expression_context(
        node_results,
        nodes=infos,
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        execution_id=execution.id,
        execution_started_at=execution.started_at,
        env=env,
        current_node_id=node.id,
        branch_history=history,
    )
    errors: list = []
    config = engine.evaluate_object(node.config, context, errors)
    step.input = config
    step.warnings.extend(str(e) for e in errors)

    node_cls = NodeRegistry.get(node.node_type)
    executor = node_cls()
    ctx = NodeRunContext(
        node=node,
        config=config,
        node_results=dict(node_results),
        execution_id=execution.id,
        workflow_id=workflow.id,
        step=step_runner,
        engine=engine,
        expression_context=context,
        initial_data=dict(initial_data or {}),
        credentials=credentials,
    )

    if node_cls.DURABLE:
        return await step_runner.run_step(ctx.step_name, lambda: _invoke(executor, ctx))
    return await _invoke(executor, ctx)


def _node_status(execution: Execution, node: Node, status: str, error: str | None = None) -> dict[str, Any]:
    event = {
        "type": "node_status",
        "execution_id": execution.id,
        "node_id": node.id,
        "node_type": node.node_type,
        "status": status,
    }
    if error is not None:
        event["error"] = error
    return event
