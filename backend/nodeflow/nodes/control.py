"""Control-flow nodes: If, Switch, Loop and Wait.

Config reaches these executors already resolved, so a condition written as
``{{ json.status = 200 }}`` arrives as a boolean. A value that is still an
expression string failed to resolve and is treated as the node's fallback.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from ..engine.graph import BranchDecision, Iteration
from ..errors import ExecutorRuntimeError, ExpressionError
from ..expressions.engine import is_expression
from ..expressions.functions import iso, to_datetime
from ..expressions.values import is_number, to_text, truthy, values_equal
from .base import BaseNode, ConfigSpec, FieldType, NodeResult, NodeRunContext, NodeType
from .registry import NodeRegistry

logger = logging.getLogger(__name__)


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_condition(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return truthy(value)


@NodeRegistry.register(NodeType.IF_CONDITION)
class IfConditionNode(BaseNode):
    CATEGORY = "Control"
    DISPLAY_NAME = "If"
    DESCRIPTION = "Route to the true or false branch based on a condition"

    @classmethod
    def CONFIG_TYPES(cls):
        return {
            "name": ConfigSpec(FieldType.STRING, default="If", required=True),
            "condition": ConfigSpec(FieldType.EXPRESSION, required=True),
        }

    @classmethod
    def OUTPUT_HANDLES(cls):
        return ["true", "false"]

    async def execute(self, ctx: NodeRunContext) -> NodeResult:
        raw = ctx.node.config.get("condition")
        value = ctx.config.get("condition")

        if _blank(value):
            logger.warning("If node %s: empty condition, treating as false", ctx.node.id)
            ctx.warn("Empty condition, treated as false")
            result = False
        elif is_expression(value):
            logger.warning("If node %s: condition did not resolve, treating as false", ctx.node.id)
            ctx.warn("Condition could not be evaluated, treated as false")
            result = False
        else:
            result = coerce_condition(value)

        branch = "true" if result else "false"
        return NodeResult(
            output={"branch": branch, "condition": raw, "result": result},
            branch=BranchDecision(branch=branch, data={"conditionResult": result}),
        )


@NodeRegistry.register(NodeType.SWITCH)
class SwitchNode(BaseNode):
    CATEGORY = "Control"
    DISPLAY_NAME = "Switch"
    DESCRIPTION = "Route to the first case whose value matches, else to default"

    @classmethod
    def CONFIG_TYPES(cls):
        return {
            "name": ConfigSpec(FieldType.STRING, default="Switch", required=True),
            "expression": ConfigSpec(FieldType.EXPRESSION, required=True),
            "cases": ConfigSpec(FieldType.LIST, default=[]),
        }

    @classmethod
    def OUTPUT_HANDLES(cls):
        return ["default"]

    async def execute(self, ctx: NodeRunContext) -> NodeResult:
        raw = ctx.node.config.get("expression")
        value = ctx.config.get("expression")
        cases = ctx.config.get("cases") or []

        branch, matched = "default", None
        if _blank(raw) or is_expression(value):
            logger.warning("Switch node %s: no usable expression, routing to default", ctx.node.id)
            ctx.warn("Expression empty or unresolved, routed to default")
            value = None
        else:
            text = to_text(value)
            for case in cases:
                case_value = case.get("value")
                if case_value == text or values_equal(case_value, value):
                    branch, matched = str(case.get("id")), case_value
                    break

        return NodeResult(
            output={"branch": branch, "expression": raw, "value": value, "matchedCase": matched},
            branch=BranchDecision(branch=branch, data={
                "evaluatedExpression": value,
                "matchedValue": matched,
                "casesCount": len(cases),
            }),
        )


@NodeRegistry.register(NodeType.LOOP)
class LoopNode(BaseNode):
    CATEGORY = "Control"
    DISPLAY_NAME = "Loop"
    DESCRIPTION = "Iterate over an array or a fixed number of times"

    @classmethod
    def CONFIG_TYPES(cls):
        return {
            "name": ConfigSpec(FieldType.STRING, default="Loop", required=True),
            "mode": ConfigSpec(FieldType.SELECT, default="array", choices=["array", "count"]),
            "arrayExpression": ConfigSpec(FieldType.EXPRESSION),
            "count": ConfigSpec(FieldType.NUMBER, default=0),
        }

    @classmethod
    def OUTPUT_HANDLES(cls):
        return ["loop", "done"]

    def resolve_items(self, ctx: NodeRunContext, value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, list):
            return value
        if not isinstance(value, str):
            logger.warning("Loop node %s: wrapping non-array value", ctx.node.id)
            return [value]
        if not value.strip():
            return []
        try:
            result = ctx.engine.evaluate(value, ctx.expression_context)
        except ExpressionError as exc:
            logger.warning("Loop node %s: %s, using empty array", ctx.node.id, exc)
            ctx.warn(f"Array expression failed: {exc}")
            return []
        if result is None:
            return []
        if isinstance(result, list):
            return result
        return [result]

    async def execute(self, ctx: NodeRunContext) -> NodeResult:
        mode = ctx.config.get("mode") or "array"
        if mode == "array":
            items = self.resolve_items(ctx, ctx.config.get("arrayExpression"))
        else:
            count = ctx.config.get("count") or 0
            if not is_number(count) or count <= 0:
                items = []
            else:
                items = list(range(int(count)))

        total = len(items)
        first = items[0] if items else None
        return NodeResult(
            output={
                "items": items,
                "total": total,
                "mode": mode,
                "results": [],
                "item": first,
                "index": 0,
            },
            branch=BranchDecision(
                branch="loop" if items else "done",
                data={"items": items, "total": total, "mode": mode, "currentIndex": 0, "results": []},
                iteration=Iteration(index=0, total=total, item=first) if items else None,
            ),
        )


UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
}


def duration_ms(value: Any, unit: str) -> int:
    multiplier = UNIT_SECONDS.get(unit)
    if multiplier is None:
        logger.warning("Wait node: unknown unit %r, defaulting to seconds", unit)
        multiplier = 1
    return int(float(value) * multiplier * 1000)


def resolve_until(value: Any) -> datetime:
    if _blank(value):
        raise ExecutorRuntimeError("Wait Node: Empty 'until' expression", retriable=False)
    if isinstance(value, str) and is_expression(value):
        raise ExecutorRuntimeError(f"Wait Node: Could not evaluate 'until' expression {value}", retriable=False)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        resolved = to_datetime(value)
        if resolved is not None:
            return resolved
    raise ExecutorRuntimeError(f'Wait Node: Invalid timestamp "{value}"', retriable=False)


@NodeRegistry.register(NodeType.WAIT)
class WaitNode(BaseNode):
    CATEGORY = "Control"
    DISPLAY_NAME = "Wait"
    DESCRIPTION = "Pause the run for a duration or until a point in time"
    DURABLE = False

    @classmethod
    def CONFIG_TYPES(cls):
        return {
            "name": ConfigSpec(FieldType.STRING, default="Wait", required=True),
            "mode": ConfigSpec(FieldType.SELECT, default="duration", choices=["duration", "until"]),
            "duration": ConfigSpec(FieldType.JSON, default={"value": 1, "unit": "seconds"}),
            "until": ConfigSpec(FieldType.EXPRESSION),
        }

    async def execute(self, ctx: NodeRunContext) -> NodeResult:
        mode = ctx.config.get("mode") or "duration"
        if mode == "duration":
            duration = ctx.config.get("duration")
            if not isinstance(duration, dict) or duration.get("value") is None:
                raise ExecutorRuntimeError(
                    "Wait Node: Duration configuration is required for duration mode",
                    retriable=False,
                )
            unit = duration.get("unit") or "seconds"
            try:
                ms = duration_ms(duration["value"], unit)
            except (TypeError, ValueError):
                raise ExecutorRuntimeError(
                    f"Wait Node: Invalid duration value {duration['value']!r}", retriable=False,
                )
            await ctx.step.sleep(f"{ctx.step_name} - sleep {duration['value']}{unit[:1]}", ms / 1000)
            info = {"mode": "duration", "duration": ms}
        else:
            until = resolve_until(ctx.config.get("until"))
            await ctx.step.sleep_until(f"{ctx.step_name} - sleep until", until)
            info = {"mode": "until", "until": iso(until)}

        return NodeResult(
            output={"completed": True, **info},
            branch=BranchDecision(branch="main", data=info),
        )
