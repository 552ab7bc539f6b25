"""Tests for the trigger and control-flow node executors."""
import pytest

from nodeflow.engine.steps import InlineStepRunner
from nodeflow.errors import ExecutorRuntimeError
from nodeflow.nodes.base import NodeResult
from nodeflow.nodes.control import (
    IfConditionNode, LoopNode, SwitchNode, WaitNode, coerce_condition, duration_ms, resolve_until,
)
from nodeflow.nodes.trigger import InitialNode, ManualTriggerNode


class TestTriggers:
    @pytest.mark.asyncio
    async def test_manual_trigger_emits_initial_data(self, make_run_ctx):
        data = {"order": {"id": 5}}
        ctx = make_run_ctx("MANUAL_TRIGGER", {"name": "Trigger"}, initial_data=data)
        output = await ManualTriggerNode().execute(ctx)
        assert output == data
        output["order"]["id"] = 6
        assert data["order"]["id"] == 5

    @pytest.mark.asyncio
    async def test_initial_node_is_empty(self, make_run_ctx):
        assert await InitialNode().execute(make_run_ctx("INITIAL")) == {}


class TestIfCondition:
    async def _run(self, make_run_ctx, resolved, raw="{{ json.Fetch.status = 200 }}"):
        ctx = make_run_ctx("IF_CONDITION", {"name": "If", "condition": raw}, {"condition": resolved})
        return ctx, await IfConditionNode().execute(ctx)

    @pytest.mark.asyncio
    async def test_true_branch(self, make_run_ctx):
        ctx, result = await self._run(make_run_ctx, True)
        assert isinstance(result, NodeResult)
        assert result.output == {"branch": "true", "condition": "{{ json.Fetch.status = 200 }}", "result": True}
        assert result.branch.branch == "true"
        assert result.branch.data == {"conditionResult": True}
        assert ctx.warnings == []

    @pytest.mark.asyncio
    async def test_false_branch_from_text(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, " FALSE ")
        assert result.branch.branch == "false"

    @pytest.mark.asyncio
    async def test_blank_condition_is_false(self, make_run_ctx):
        ctx, result = await self._run(make_run_ctx, "", raw="")
        assert result.output["result"] is False
        assert ctx.warnings == ["Empty condition, treated as false"]

    @pytest.mark.asyncio
    async def test_unresolved_condition_is_false(self, make_run_ctx):
        ctx, result = await self._run(make_run_ctx, "{{ 1 / 0 }}", raw="{{ 1 / 0 }}")
        assert result.branch.branch == "false"
        assert len(ctx.warnings) == 1

    def test_coerce_condition(self):
        assert coerce_condition("true") is True
        assert coerce_condition(0) is False
        assert coerce_condition([1]) is True
        assert coerce_condition("yes") is True


class TestSwitch:
    CASES = [{"id": "case-ok", "value": "200"}, {"id": "case-missing", "value": 404}]

    async def _run(self, make_run_ctx, value, raw="{{ json.Fetch.status }}", cases=None):
        cases = self.CASES if cases is None else cases
        ctx = make_run_ctx(
            "SWITCH",
            {"name": "Switch", "expression": raw, "cases": cases},
            {"name": "Switch", "expression": value, "cases": cases},
        )
        return ctx, await SwitchNode().execute(ctx)

    @pytest.mark.asyncio
    async def test_matches_string_form(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, 200)
        assert result.branch.branch == "case-ok"
        assert result.output == {
            "branch": "case-ok",
            "expression": "{{ json.Fetch.status }}",
            "value": 200,
            "matchedCase": "200",
        }
        assert result.branch.data == {"evaluatedExpression": 200, "matchedValue": "200", "casesCount": 2}

    @pytest.mark.asyncio
    async def test_matches_typed_value(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, 404)
        assert result.branch.branch == "case-missing"

    @pytest.mark.asyncio
    async def test_first_match_wins(self, make_run_ctx):
        cases = [{"id": "a", "value": "x"}, {"id": "b", "value": "x"}]
        _, result = await self._run(make_run_ctx, "x", cases=cases)
        assert result.branch.branch == "a"

    @pytest.mark.asyncio
    async def test_no_match_goes_default(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, 500)
        assert result.branch.branch == "default"
        assert result.output["matchedCase"] is None

    @pytest.mark.asyncio
    async def test_empty_expression_goes_default(self, make_run_ctx):
        ctx, result = await self._run(make_run_ctx, "", raw="")
        assert result.branch.branch == "default"
        assert ctx.warnings

    @pytest.mark.asyncio
    async def test_bool_does_not_match_number_case(self, make_run_ctx):
        cases = [{"id": "one", "value": 1}]
        _, result = await self._run(make_run_ctx, True, cases=cases)
        assert result.branch.branch == "default"


class TestLoop:
    async def _run(self, make_run_ctx, config):
        ctx = make_run_ctx("LOOP", {"name": "Loop", **config})
        return ctx, await LoopNode().execute(ctx)

    @pytest.mark.asyncio
    async def test_array_mode(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, {"mode": "array", "arrayExpression": ["a", "b"]})
        assert result.output == {
            "items": ["a", "b"], "total": 2, "mode": "array", "results": [], "item": "a", "index": 0,
        }
        assert result.branch.branch == "loop"
        assert result.branch.iteration.total == 2
        assert result.branch.iteration.item == "a"

    @pytest.mark.asyncio
    async def test_empty_array_goes_done(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, {"mode": "array", "arrayExpression": []})
        assert result.branch.branch == "done"
        assert result.branch.iteration is None
        assert result.output["item"] is None

    @pytest.mark.asyncio
    async def test_scalar_wrapped(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, {"mode": "array", "arrayExpression": {"id": 1}})
        assert result.output["items"] == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_unresolved_expression_gives_empty(self, make_run_ctx):
        ctx, result = await self._run(make_run_ctx, {"mode": "array", "arrayExpression": "{{ 1 / 0 }}"})
        assert result.output["items"] == []
        assert ctx.warnings

    @pytest.mark.asyncio
    async def test_template_string_evaluated(self, make_run_ctx):
        _, result = await self._run(
            make_run_ctx, {"mode": "array", "arrayExpression": "{{ json.Fetch.body.items.id }}"},
        )
        assert result.output["items"] == [1, 2]

    @pytest.mark.asyncio
    async def test_count_mode(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, {"mode": "count", "count": 3})
        assert result.output["items"] == [0, 1, 2]
        assert result.output["mode"] == "count"

    @pytest.mark.asyncio
    async def test_non_positive_count(self, make_run_ctx):
        _, result = await self._run(make_run_ctx, {"mode": "count", "count": -2})
        assert result.output["items"] == []
        assert result.branch.branch == "done"


class TestWait:
    async def _run(self, make_run_ctx, config, **kwargs):
        ctx = make_run_ctx("WAIT", {"name": "Pause", **config}, **kwargs)
        return await WaitNode().execute(ctx)

    @pytest.mark.asyncio
    async def test_duration_sleeps_through_runner(self, make_run_ctx, step_runner, recording_sleep):
        result = await self._run(make_run_ctx, {"mode": "duration", "duration": {"value": 2, "unit": "seconds"}})
        assert recording_sleep.calls == [2.0]
        assert "Pause (n1) - sleep 2s" in step_runner.checkpoints
        assert result.output == {"completed": True, "mode": "duration", "duration": 2000}
        assert result.branch.branch == "main"

    @pytest.mark.asyncio
    async def test_minutes(self, make_run_ctx, recording_sleep):
        result = await self._run(make_run_ctx, {"duration": {"value": 1.5, "unit": "minutes"}})
        assert recording_sleep.calls == [90.0]
        assert result.output["duration"] == 90000

    @pytest.mark.asyncio
    async def test_until(self, make_run_ctx, recording_sleep):
        result = await self._run(make_run_ctx, {"mode": "until", "until": "2024-03-15T12:31:00Z"})
        assert recording_sleep.calls == [60.0]
        assert result.output == {"completed": True, "mode": "until", "until": "2024-03-15T12:31:00.000Z"}

    @pytest.mark.asyncio
    async def test_until_in_past_does_not_block(self, make_run_ctx, recording_sleep):
        await self._run(make_run_ctx, {"mode": "until", "until": "2020-01-01T00:00:00Z"})
        assert recording_sleep.calls == [0.0]

    @pytest.mark.asyncio
    async def test_completed_sleep_replayed(self, make_run_ctx, recording_sleep):
        runner = InlineStepRunner({"Pause (n1) - sleep 5s": None}, sleep=recording_sleep)
        await self._run(make_run_ctx, {"duration": {"value": 5, "unit": "seconds"}}, step=runner)
        assert recording_sleep.calls == []

    @pytest.mark.asyncio
    async def test_missing_duration(self, make_run_ctx):
        with pytest.raises(ExecutorRuntimeError, match="Duration configuration is required") as exc_info:
            await self._run(make_run_ctx, {"mode": "duration"})
        assert not exc_info.value.retriable

    @pytest.mark.asyncio
    async def test_invalid_until(self, make_run_ctx):
        with pytest.raises(ExecutorRuntimeError, match="Invalid timestamp") as exc_info:
            await self._run(make_run_ctx, {"mode": "until", "until": "next tuesday"})
        assert not exc_info.value.retriable

    def test_duration_ms(self):
        assert duration_ms(2, "hours") == 7_200_000
        assert duration_ms("3", "fortnights") == 3000

    def test_resolve_until(self):
        assert resolve_until(0).year == 1970
        with pytest.raises(ExecutorRuntimeError, match="Empty"):
            resolve_until("  ")
        with pytest.raises(ExecutorRuntimeError, match="Could not evaluate"):
            resolve_until("{{ json.when }}")
        with pytest.raises(ExecutorRuntimeError):
            resolve_until(True)
