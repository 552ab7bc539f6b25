"""Pydantic schemas for API request/response models."""
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, Field

from ..engine.graph import Edge, Execution, Node, Workflow


class EdgeSchema(BaseModel):
    id: str = ""
    source_node: str = Field(validation_alias=AliasChoices("source_node", "source", "fromNodeId"))
    target_node: str = Field(validation_alias=AliasChoices("target_node", "target", "toNodeId"))
    source_handle: str = Field(
        default="main",
        validation_alias=AliasChoices("source_handle", "sourceHandle", "fromOutput"),
    )
    target_handle: str = Field(
        default="main",
        validation_alias=AliasChoices("target_handle", "targetHandle", "toInput"),
    )

    def to_edge(self) -> Edge:
        return Edge(
            id=self.id,
            source_node=self.source_node,
            target_node=self.target_node,
            source_handle=self.source_handle or "main",
            target_handle=self.target_handle or "main",
        )


class NodeSchema(BaseModel):
    id: str
    node_type: str = Field(validation_alias=AliasChoices("node_type", "type"))
    name: str = ""
    config: dict[str, Any] = Field(default={}, validation_alias=AliasChoices("config", "data"))
    position: dict[str, float] = {}

    def to_node(self) -> Node:
        return Node(
            id=self.id,
            node_type=self.node_type,
            name=self.name,
            config=dict(self.config),
            position=dict(self.position),
        )


class GraphSchema(BaseModel):
    nodes: list[NodeSchema] = []
    edges: list[EdgeSchema] = []

    def to_lists(self) -> tuple[list[Node], list[Edge]]:
        return [n.to_node() for n in self.nodes], [e.to_edge() for e in self.edges]


class ConnectionRequest(BaseModel):
    graph: GraphSchema
    edge: EdgeSchema


class WorkflowSchema(GraphSchema):
    id: str = ""
    name: str = ""
    description: str = ""
    owner_id: str | None = None

    def to_workflow(self) -> Workflow:
        nodes, edges = self.to_lists()
        return Workflow(id=self.id, name=self.name, nodes=nodes, edges=edges, owner_id=self.owner_id)


class ExecuteRequest(BaseModel):
    initial_data: dict[str, Any] = {}
    session_id: str | None = None


class ExpressionPreviewRequest(BaseModel):
    expression: Any
    node_results: dict[str, Any] = {}
    nodes: list[NodeSchema] = []
    current_node_id: str | None = None
    workflow_id: str = ""
    workflow_name: str | None = None


class ExpressionPreviewResponse(BaseModel):
    result: Any = None
    error: str | None = None
    position: int | None = None


class ValidationIssueSchema(BaseModel):
    type: str
    message: str
    node_ids: list[str] = []


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[ValidationIssueSchema] = []
    warnings: list[ValidationIssueSchema] = []


class ConnectionResponse(BaseModel):
    is_valid: bool
    error: str | None = None


class SortResponse(BaseModel):
    order: list[str]
    has_cycle: bool
    cycles: list[list[str]] = []


class NodeDefinitionResponse(BaseModel):
    node_type: str
    display_name: str
    category: str
    description: str
    config: dict[str, Any]
    outputs: list[str]


class ExecutionStepSchema(BaseModel):
    id: str
    node_id: str
    node_name: str
    node_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    input: Any = None
    output: Any = None
    error: str | None = None
    warnings: list[str] = []


class ExecutionSchema(BaseModel):
    id: str
    workflow_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None
    error_type: str | None = None
    steps: list[ExecutionStepSchema] = []

    @classmethod
    def from_execution(cls, execution: Execution) -> "ExecutionSchema":
        return cls(
            id=execution.id,
            workflow_id=execution.workflow_id,
            status=execution.status.value,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            result=execution.result,
            error=execution.error,
            error_type=execution.error_type,
            steps=[
                ExecutionStepSchema(
                    id=s.id,
                    node_id=s.node_id,
                    node_name=s.node_name,
                    node_type=s.node_type,
                    status=s.status.value,
                    started_at=s.started_at,
                    completed_at=s.completed_at,
                    input=s.input,
                    output=s.output,
                    error=s.error,
                    warnings=list(s.warnings),
                )
                for s in execution.steps
            ],
        )


class ExecuteResponse(BaseModel):
    execution_id: str
    status: str
    execution: ExecutionSchema | None = None


class NodeStatusEvent(BaseModel):
    type: Literal["node_status"] = "node_status"
    execution_id: str
    node_id: str
    node_type: str
    status: Literal["loading", "success", "error"]
    error: str | None = None


class ExecutionStartEvent(BaseModel):
    type: Literal["execution_start"] = "execution_start"
    execution_id: str
    workflow_id: str


class ExecutionCompleteEvent(BaseModel):
    type: Literal["execution_complete"] = "execution_complete"
    execution_id: str
    status: str
    result: Any = None
    error: str | None = None


class ExecutionErrorEvent(BaseModel):
    type: Literal["execution_error"] = "execution_error"
    execution_id: str
    status: str
    error: str | None = None
    error_type: str | None = None


class ExecutionCancellingEvent(BaseModel):
    type: Literal["execution_cancelling"] = "execution_cancelling"
    execution_id: str


ExecutionEvent = Annotated[
    Union[
        NodeStatusEvent, ExecutionStartEvent, ExecutionCompleteEvent,
        ExecutionErrorEvent, ExecutionCancellingEvent,
    ],
    Field(discriminator="type"),
]
