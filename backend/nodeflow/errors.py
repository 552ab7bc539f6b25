"""Error taxonomy for graph validation, expression resolution and dispatch."""


class WorkflowError(Exception):
    """Base class for every error raised by the engine.

    ``retriable`` tells the durable-step collaborator whether re-running the
    failed unit of work can possibly succeed.
    """

    retriable: bool = True


class GraphCycleError(WorkflowError):
    retriable = False

    def __init__(self, cycles: list[list[str]]):
        self.cycles = cycles
        description = "; ".join(" → ".join(cycle) for cycle in cycles)
        super().__init__(f"Workflow contains cycles: {description}")


class MissingTriggerError(WorkflowError):
    retriable = False

    def __init__(self, message: str = "Workflow must have at least one trigger node"):
        super().__init__(message)


class InvalidConnectionError(WorkflowError):
    retriable = False

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ExpressionError(WorkflowError):
    """An expression failed to parse or evaluate.

    Carries the expression source (without ``{{ }}``), the character offset
    inside that source where the problem was detected, and a description.
    """

    retriable = False

    def __init__(self, expression: str, description: str, position: int | None = None):
        self.expression = expression
        self.description = description
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Expression '{expression}' failed{where}: {description}")


class ExpressionSyntaxError(ExpressionError):
    pass


class UnknownNodeTypeError(WorkflowError):
    retriable = False

    def __init__(self, node_type: str):
        self.node_type = node_type
        super().__init__(f"Executor not found for node type {node_type}")


class ExecutorRuntimeError(WorkflowError):
    """Raised by a node executor; retried only by the step runner's own policy."""

    def __init__(self, message: str, *, retriable: bool = True):
        self.retriable = retriable
        super().__init__(message)


class CredentialResolutionError(WorkflowError):
    retriable = False

    def __init__(self, credential_id: str, message: str):
        self.credential_id = credential_id
        super().__init__(message)


class CredentialNotFoundError(CredentialResolutionError):
    def __init__(self, credential_id: str):
        super().__init__(credential_id, f"Credential not found: {credential_id}")


class CredentialAccessDeniedError(CredentialResolutionError):
    def __init__(self, credential_id: str):
        super().__init__(credential_id, f"Not authorized to access credential: {credential_id}")
