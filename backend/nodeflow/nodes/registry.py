"""Node registry with auto-discovery."""
import importlib
import pkgutil

from ..errors import UnknownNodeTypeError
from .base import EDITOR_ONLY_TYPES, BaseNode, NodeDefinition, NodeType


class NodeRegistry:
    """Closed registry mapping node type tags to BaseNode subclasses."""

    _nodes: dict[str, type[BaseNode]] = {}

    @classmethod
    def register(cls, node_type: str | NodeType | None = None):
        """Decorator to register a node class.

        Usage:
            @NodeRegistry.register(NodeType.WAIT)
            class WaitNode(BaseNode):
                ...
        """
        def decorator(node_cls: type[BaseNode]) -> type[BaseNode]:
            if isinstance(node_type, NodeType):
                name = node_type.value
            else:
                name = node_type or node_cls.__name__
            cls._nodes[name] = node_cls
            return node_cls
        return decorator

    @classmethod
    def get(cls, node_type: str) -> type[BaseNode]:
        if node_type not in cls._nodes:
            raise UnknownNodeTypeError(node_type)
        return cls._nodes[node_type]

    @classmethod
    def all_definitions(cls) -> dict[str, NodeDefinition]:
        return {
            name: node_cls.get_definition(name)
            for name, node_cls in cls._nodes.items()
        }

    @classmethod
    def missing_types(cls) -> list[str]:
        """Executable NodeType tags that have no registered executor."""
        return [
            t.value for t in NodeType
            if t.value not in EDITOR_ONLY_TYPES and t.value not in cls._nodes
        ]

    @classmethod
    def discover(cls, package_name: str) -> None:
        """Import all modules in the given package to trigger @register decorators."""
        package = importlib.import_module(package_name)
        if not hasattr(package, "__path__"):
            return
        for _, module_name, _ in pkgutil.iter_modules(package.__path__):
            if module_name.startswith("_") or module_name in ("base", "registry"):
                continue
            importlib.import_module(f"{package_name}.{module_name}")

    @classmethod
    def clear(cls) -> None:
        cls._nodes.clear()
