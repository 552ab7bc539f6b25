"""REST API routes."""
import asyncio
import logging
import uuid
from typing import Any

from fastapi import APIRouter, HTTPException

from ..config import settings
from ..credentials import InMemoryCredentialStore
from ..engine.executor import execute_workflow
from ..engine.graph import Execution, Workflow
from ..engine.session import create_session, get_session, remove_session
from ..engine.store import InMemoryExecutionStore, JsonWorkflowStore
from ..engine.validator import (
    ValidationResult, topological_sort, validate_connection, validate_workflow_graph,
)
from ..errors import ExpressionError, InvalidConnectionError, WorkflowError
from ..expressions.context import NodeInfo, create_expression_context
from ..expressions.engine import ExpressionEngine
from ..models.schemas import (
    ConnectionRequest, ConnectionResponse, EdgeSchema, ExecuteRequest, ExecuteResponse,
    ExecutionCancellingEvent, ExecutionSchema, ExpressionPreviewRequest, ExpressionPreviewResponse,
    GraphSchema, SortResponse, ValidationResponse, WorkflowSchema,
)
from ..nodes.registry import NodeRegistry
from .websocket import manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

workflow_store = JsonWorkflowStore(settings.workflows_dir)
# In-memory run history, capped at settings.max_executions
execution_store = InMemoryExecutionStore(settings.max_executions)
credential_store = InMemoryCredentialStore()


def _report(result: ValidationResult) -> dict[str, Any]:
    return ValidationResponse(
        is_valid=result.is_valid,
        errors=[vars(i) for i in result.errors],
        warnings=[vars(i) for i in result.warnings],
    ).model_dump()


def _new_engine() -> ExpressionEngine:
    return ExpressionEngine(
        strict=settings.strict_expressions,
        cache_size=settings.expression_cache_size,
    )


@router.get("/nodes")
async def list_nodes():
    """Return all registered node definitions."""
    result = {}
    for name, defn in NodeRegistry.all_definitions().items():
        result[name] = {
            "node_type": defn.node_type,
            "display_name": defn.display_name,
            "category": defn.category,
            "description": defn.description,
            "config": {
                k: {
                    "type": v.ftype.value,
                    "default": v.default,
                    "required": v.required,
                    "choices": v.choices,
                    "description": v.description,
                }
                for k, v in defn.config.items()
            },
            "outputs": defn.outputs,
        }
    return result


@router.post("/graphs/validate", response_model=ValidationResponse)
async def validate_graph(graph: GraphSchema):
    nodes, edges = graph.to_lists()
    return _report(validate_workflow_graph(nodes, edges))


@router.post("/graphs/validate-connection", response_model=ConnectionResponse)
async def check_connection(request: ConnectionRequest):
    nodes, edges = request.graph.to_lists()
    check = validate_connection(nodes, edges, request.edge.to_edge())
    return ConnectionResponse(is_valid=check.is_valid, error=check.error)


@router.post("/graphs/sort", response_model=SortResponse)
async def sort_graph(graph: GraphSchema):
    nodes, edges = graph.to_lists()
    result = topological_sort(nodes, edges)
    return SortResponse(order=result.order, has_cycle=result.has_cycle, cycles=result.cycles)


@router.post("/expressions/evaluate", response_model=ExpressionPreviewResponse)
async def preview_expression(request: ExpressionPreviewRequest):
    """Evaluate an expression against sample node results, as the editor preview does."""
    engine = ExpressionEngine(strict=True, cache_size=0)
    context = create_expression_context(
        request.node_results,
        nodes=[NodeInfo(id=n.id, name=n.to_node().result_key, type=n.node_type) for n in request.nodes],
        workflow_id=request.workflow_id,
        workflow_name=request.workflow_name,
        env=settings.public_env(),
        current_node_id=request.current_node_id,
    )
    try:
        result = engine.evaluate_object(request.expression, context)
    except ExpressionError as e:
        return ExpressionPreviewResponse(error=str(e), position=e.position)
    return ExpressionPreviewResponse(result=result)


@router.post("/workflows")
async def save_workflow(workflow: WorkflowSchema):
    """Save a workflow definition to disk."""
    if not workflow.id:
        workflow.id = str(uuid.uuid4())
    workflow_store.save(workflow.model_dump())
    return {"id": workflow.id}


@router.get("/workflows")
async def list_workflows():
    return workflow_store.list()


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str):
    data = workflow_store.load(workflow_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return data


@router.delete("/workflows/{workflow_id}")
async def delete_workflow(workflow_id: str):
    if not workflow_store.delete(workflow_id):
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"status": "deleted"}


@router.post("/workflows/{workflow_id}/connections")
async def connect_nodes(workflow_id: str, edge: EdgeSchema):
    """Add an edge to a saved workflow; self-loops, duplicates and cycles are refused."""
    data = workflow_store.load(workflow_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    workflow = Workflow.from_dict(data)
    try:
        validate_connection(workflow.nodes, workflow.edges, edge.to_edge()).raise_for_error()
    except InvalidConnectionError as e:
        raise HTTPException(status_code=400, detail=e.reason)

    if not edge.id:
        edge.id = str(uuid.uuid4())
    data.setdefault("edges", []).append(edge.model_dump())
    workflow_store.save(data)
    return {"id": edge.id}


@router.post("/workflows/{workflow_id}/execute", response_model=ExecuteResponse)
async def execute(workflow_id: str, request: ExecuteRequest | None = None, wait: bool = False):
    """Run a saved workflow.

    Returns immediately with the execution id unless ``wait`` is set; status
    events for every node are delivered over the WebSocket session.
    """
    workflow = workflow_store.get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail="Workflow not found")

    report = validate_workflow_graph(workflow.nodes, workflow.edges)
    try:
        report.raise_for_errors()
    except WorkflowError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), **_report(report)})

    request = request or ExecuteRequest()
    execution_id = str(uuid.uuid4())
    session = create_session(execution_id, workflow.id, request.session_id)
    progress_cb = manager.make_progress_callback(session.session_id, asyncio.get_running_loop())
    if workflow.owner_id:
        credential_store.set_workflow_owner(workflow.id, workflow.owner_id)

    async def _run() -> Execution:
        try:
            return await execute_workflow(
                workflow,
                initial_data=request.initial_data,
                engine=_new_engine(),
                credentials=credential_store,
                env=settings.public_env(),
                controller=session.controller,
                store=execution_store,
                progress_callback=progress_cb,
                execution_id=execution_id,
            )
        finally:
            remove_session(execution_id)

    if wait:
        execution = await _run()
        return ExecuteResponse(
            execution_id=execution_id,
            status=execution.status.value,
            execution=ExecutionSchema.from_execution(execution),
        )

    session.task = asyncio.create_task(_run())
    logger.info("Started execution %s of workflow %s in the background", execution_id, workflow.id)
    return ExecuteResponse(execution_id=execution_id, status="started")


@router.get("/executions")
async def list_executions(workflow_id: str | None = None):
    return [ExecutionSchema.from_execution(e) for e in execution_store.list(workflow_id)]


@router.get("/executions/{execution_id}", response_model=ExecutionSchema)
async def get_execution(execution_id: str):
    execution = execution_store.get(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return ExecutionSchema.from_execution(execution)


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(execution_id: str):
    session = get_session(execution_id)
    if not session:
        raise HTTPException(status_code=404, detail="Execution not found or already completed")
    session.cancel()
    await manager.send_to_session(session.session_id, ExecutionCancellingEvent(execution_id=execution_id))
    return {"status": "cancelling"}
