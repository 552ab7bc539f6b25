"""Durable-step boundary: named units of work whose results are checkpointed."""
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from .graph import utcnow

logger = logging.getLogger(__name__)

StepFn = Callable[[], Awaitable[Any]]


class StepRunner(Protocol):
    """What the dispatcher needs from a durable-execution backend.

    ``run_step`` must return the recorded result without calling ``fn`` when
    a step of that name already completed in this run.
    """

    async def run_step(self, name: str, fn: StepFn) -> Any:
        ...

    async def sleep(self, name: str, seconds: float) -> None:
        ...

    async def sleep_until(self, name: str, when: datetime) -> None:
        ...


class InlineStepRunner:
    """In-process runner that memoizes step results by name.

    Feeding the checkpoints of an interrupted run back in replays completed
    steps instead of executing them again.
    """

    def __init__(
        self,
        checkpoints: dict[str, Any] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.checkpoints: dict[str, Any] = dict(checkpoints or {})
        self._sleep = sleep
        self._clock = clock

    async def run_step(self, name: str, fn: StepFn) -> Any:
        if name in self.checkpoints:
            logger.debug("Replaying step %s from checkpoint", name)
            return self.checkpoints[name]
        result = await fn()
        self.checkpoints[name] = result
        return result

    async def sleep(self, name: str, seconds: float) -> None:
        if name in self.checkpoints:
            logger.debug("Skipping completed sleep %s", name)
            return
        await self._sleep(max(0.0, seconds))
        self.checkpoints[name] = None

    async def sleep_until(self, name: str, when: datetime) -> None:
        await self.sleep(name, (when - self._clock()).total_seconds())


def save_checkpoints(path: Path, runner: InlineStepRunner) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(runner.checkpoints, default=str))


def load_checkpoints(path: Path) -> dict[str, Any]:
    """Load step results saved by ``save_checkpoints`` (empty if absent)."""
    if not path.exists():
        return {}
    return json.loads(path.read_text())
