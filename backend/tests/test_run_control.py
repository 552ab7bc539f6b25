"""Tests for run cancellation, sessions and step checkpoints."""
import asyncio
import threading

import pytest

from nodeflow.engine import session as sessions
from nodeflow.engine.run_control import RunController, RunState
from nodeflow.engine.steps import InlineStepRunner, load_checkpoints, save_checkpoints


class TestRunControllerStates:
    def test_initial_state_running(self):
        ctrl = RunController()
        assert ctrl.state == RunState.RUNNING
        assert not ctrl.cancelled
        assert ctrl.reason is None

    def test_cancel(self):
        ctrl = RunController()
        ctrl.cancel()
        assert ctrl.state == RunState.CANCELLED
        assert ctrl.cancelled
        assert ctrl.reason == "Execution cancelled"

    def test_first_reason_kept(self):
        ctrl = RunController()
        ctrl.cancel("first")
        ctrl.cancel("second")
        assert ctrl.reason == "first"

    def test_state_follows_cancel(self):
        ctrl = RunController()
        assert ctrl.state == RunState.RUNNING
        ctrl.cancel()
        assert ctrl.state == RunState.CANCELLED

    def test_cancel_from_another_thread(self):
        ctrl = RunController()
        t = threading.Thread(target=ctrl.cancel, args=("from thread",))
        t.start()
        t.join(timeout=1.0)
        assert ctrl.cancelled
        assert ctrl.reason == "from thread"


class TestSessions:
    def test_create_get_remove(self):
        session = sessions.create_session("exec-a", "wf-1")
        try:
            assert sessions.get_session("exec-a") is session
            assert session.session_id == "exec-a"
            assert session in sessions.active_sessions()
        finally:
            sessions.remove_session("exec-a")
        assert sessions.get_session("exec-a") is None

    def test_custom_channel(self):
        session = sessions.create_session("exec-b", "wf-1", session_id="browser-tab")
        try:
            assert session.session_id == "browser-tab"
        finally:
            sessions.remove_session("exec-b")

    def test_cancel_signals_controller(self):
        session = sessions.ExecutionSession("exec-c", "wf-1")
        session.cancel()
        assert session.controller.cancelled
        assert session.controller.reason == "Execution cancelled by user"

    def test_remove_unknown_is_noop(self):
        sessions.remove_session("never-existed")


class TestInlineStepRunner:
    @pytest.mark.asyncio
    async def test_result_memoized_by_name(self):
        runner = InlineStepRunner()
        calls = []

        async def work():
            calls.append(1)
            return {"n": len(calls)}

        assert await runner.run_step("step", work) == {"n": 1}
        assert await runner.run_step("step", work) == {"n": 1}
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failed_step_not_recorded(self):
        runner = InlineStepRunner()

        async def fail():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await runner.run_step("step", fail)
        assert "step" not in runner.checkpoints

    @pytest.mark.asyncio
    async def test_real_sleep_is_short(self):
        runner = InlineStepRunner()
        await asyncio.wait_for(runner.sleep("nap", -5), timeout=1.0)
        assert runner.checkpoints == {"nap": None}


class TestCheckpointFiles:
    def test_save_and_load_roundtrip(self, tmp_path):
        runner = InlineStepRunner({"A (a)": {"output": {"x": 1}, "branch": None, "warnings": []}})
        path = tmp_path / "checkpoints.json"

        save_checkpoints(path, runner)
        assert path.exists()
        assert load_checkpoints(path) == runner.checkpoints

    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "checkpoints.json"
        save_checkpoints(path, InlineStepRunner())
        assert path.exists()

    def test_missing_file_is_empty(self, tmp_path):
        assert load_checkpoints(tmp_path / "absent.json") == {}
