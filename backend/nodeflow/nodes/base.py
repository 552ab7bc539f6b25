"""Base node abstraction, node type tags and the per-node run context."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..engine.graph import BranchDecision, Node

if TYPE_CHECKING:
    from ..credentials import CredentialResolver
    from ..engine.steps import StepRunner
    from ..expressions.context import ExpressionContext
    from ..expressions.engine import ExpressionEngine


class NodeType(str, Enum):
    INITIAL = "INITIAL"
    MANUAL_TRIGGER = "MANUAL_TRIGGER"
    IF_CONDITION = "IF_CONDITION"
    SWITCH = "SWITCH"
    LOOP = "LOOP"
    WAIT = "WAIT"
    HTTP_REQUEST = "HTTP_REQUEST"
    AI_GENERATE = "AI_GENERATE"
    GROUP = "GROUP"
    ANNOTATION = "ANNOTATION"


# Visual containers and notes; the dispatcher skips them
EDITOR_ONLY_TYPES: set[str] = {NodeType.GROUP.value, NodeType.ANNOTATION.value}


class FieldType(str, Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    JSON = "JSON"
    EXPRESSION = "EXPRESSION"
    SELECT = "SELECT"
    LIST = "LIST"
    CREDENTIAL = "CREDENTIAL"


@dataclass
class ConfigSpec:
    ftype: FieldType
    default: Any = None
    required: bool = False
    choices: list[Any] | None = None
    description: str = ""


@dataclass
class NodeDefinition:
    """Serializable node definition sent to the editor."""
    node_type: str
    display_name: str
    category: str
    description: str
    config: dict[str, ConfigSpec]
    outputs: list[str]


@dataclass
class NodeResult:
    """Executor output plus the branch it took, for control-flow nodes."""
    output: Any
    branch: BranchDecision | None = None


@dataclass
class NodeRunContext:
    """Everything an executor may touch while it runs one node."""
    node: Node
    config: dict[str, Any]
    node_results: dict[str, Any]
    execution_id: str
    workflow_id: str
    step: "StepRunner"
    engine: "ExpressionEngine"
    expression_context: "ExpressionContext"
    initial_data: dict[str, Any] = field(default_factory=dict)
    credentials: "CredentialResolver | None" = None
    warnings: list[str] = field(default_factory=list)

    @property
    def step_name(self) -> str:
        return f"{self.node.result_key} ({self.node.id})"

    def warn(self, message: str) -> None:
        self.warnings.append(message)


class BaseNode(ABC):
    """Abstract base class for all executable node types."""

    CATEGORY: str = "Uncategorized"
    DISPLAY_NAME: str = ""
    DESCRIPTION: str = ""
    # False when the executor drives the step runner itself (e.g. durable sleeps)
    DURABLE: bool = True

    @classmethod
    def CONFIG_TYPES(cls) -> dict[str, ConfigSpec]:
        return {}

    @classmethod
    def OUTPUT_HANDLES(cls) -> list[str]:
        return ["main"]

    @abstractmethod
    async def execute(self, ctx: NodeRunContext) -> Any:
        ...

    @classmethod
    def get_definition(cls, node_type: str) -> NodeDefinition:
        return NodeDefinition(
            node_type=node_type,
            display_name=cls.DISPLAY_NAME or cls.__name__,
            category=cls.CATEGORY,
            description=cls.DESCRIPTION or cls.__doc__ or "",
            config=cls.CONFIG_TYPES(),
            outputs=cls.OUTPUT_HANDLES(),
        )
