"""Trigger nodes: where a run's data enters the graph."""
import copy

from .base import BaseNode, ConfigSpec, FieldType, NodeRunContext, NodeType
from .registry import NodeRegistry


@NodeRegistry.register(NodeType.INITIAL)
class InitialNode(BaseNode):
    CATEGORY = "Triggers"
    DISPLAY_NAME = "Start"
    DESCRIPTION = "Placeholder shown on an empty canvas"

    async def execute(self, ctx: NodeRunContext) -> dict:
        return {}


@NodeRegistry.register(NodeType.MANUAL_TRIGGER)
class ManualTriggerNode(BaseNode):
    CATEGORY = "Triggers"
    DISPLAY_NAME = "Manual Trigger"
    DESCRIPTION = "Start the workflow by hand; emits the run's initial data"

    @classmethod
    def CONFIG_TYPES(cls):
        return {"name": ConfigSpec(FieldType.STRING, default="Manual Trigger", required=True)}

    async def execute(self, ctx: NodeRunContext) -> dict:
        return copy.deepcopy(ctx.initial_data)
