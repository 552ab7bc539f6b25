"""WebSocket fan-out of execution events per session.

Each outgoing event is validated against the ``ExecutionEvent`` union. The
manager also keeps the latest event per node for recent sessions, so a client
that subscribes after a background run has started still sees where it is.
"""
import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel, TypeAdapter

from ..models.schemas import ExecutionEvent, NodeStatusEvent

logger = logging.getLogger(__name__)

event_adapter: TypeAdapter = TypeAdapter(ExecutionEvent)


def _replay_key(event: BaseModel) -> str:
    # Later events with the same key replace earlier ones
    if isinstance(event, NodeStatusEvent):
        return f"node:{event.node_id}"
    return event.type


class ConnectionManager:
    """Manages active WebSocket connections and event history per session."""

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self._connections: dict[str, list[WebSocket]] = {}
        self._history: OrderedDict[str, dict[str, str]] = OrderedDict()

    async def connect(self, session_id: str, websocket: WebSocket):
        await websocket.accept()
        self._connections.setdefault(session_id, []).append(websocket)
        for message in list(self._history.get(session_id, {}).values()):
            if not await self._send(session_id, websocket, message):
                break

    def disconnect(self, session_id: str, websocket: WebSocket):
        if session_id in self._connections:
            self._connections[session_id] = [
                ws for ws in self._connections[session_id] if ws is not websocket
            ]
            if not self._connections[session_id]:
                del self._connections[session_id]

    def connection_count(self, session_id: str) -> int:
        return len(self._connections.get(session_id, []))

    def history(self, session_id: str) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self._history.get(session_id, {}).values()]

    def _remember(self, session_id: str, event: BaseModel, message: str) -> None:
        if self.history_size <= 0:
            return
        entries = self._history.setdefault(session_id, {})
        entries[_replay_key(event)] = message
        self._history.move_to_end(session_id)
        while len(self._history) > self.history_size:
            self._history.popitem(last=False)

    async def _send(self, session_id: str, websocket: WebSocket, message: str) -> bool:
        try:
            await websocket.send_text(message)
        except (RuntimeError, ConnectionError) as exc:
            logger.debug("Dropping websocket for session %s: %s", session_id, exc)
            self.disconnect(session_id, websocket)
            return False
        return True

    async def send_to_session(self, session_id: str, data: dict[str, Any] | BaseModel):
        event = data if isinstance(data, BaseModel) else event_adapter.validate_python(data)
        message = json.dumps(event.model_dump(), default=str)
        self._remember(session_id, event, message)
        for ws in list(self._connections.get(session_id, [])):
            await self._send(session_id, ws, message)

    def make_progress_callback(self, session_id: str, loop: asyncio.AbstractEventLoop):
        """Create a sync callback that schedules status events on ``loop``.

        Safe to call from the loop itself or from a worker thread.
        """
        def callback(data: dict[str, Any]):
            asyncio.run_coroutine_threadsafe(
                self.send_to_session(session_id, data),
                loop,
            )
        return callback


manager = ConnectionManager()
