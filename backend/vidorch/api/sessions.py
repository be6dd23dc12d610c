"""WebSocket connections grouped by context id."""

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

from vidorch.schemas.a2a import Task

logger = logging.getLogger(__name__)

STATUS_METHOD = "tasks/status"


class SessionRegistry:
    """Tracks live WebSocket connections per context.

    Register `on_task_update` as a store status listener; every change to a
    task is pushed to the connections of that task's context as a
    `tasks/status` JSON-RPC notification.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    def add(self, context_id: str, websocket: WebSocket) -> None:
        self._connections[context_id].add(websocket)
        logger.info(f"WebSocket joined context {context_id} ({len(self._connections[context_id])} open)")

    def remove(self, context_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(context_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self._connections[context_id]
        logger.info(f"WebSocket left context {context_id}")

    def connection_count(self, context_id: str) -> int:
        return len(self._connections.get(context_id, ()))

    async def on_task_update(self, task: Task) -> None:
        connections = list(self._connections.get(task.context_id, ()))
        if not connections:
            return
        notification = {"jsonrpc": "2.0", "method": STATUS_METHOD, "params": task.to_wire()}
        results = await asyncio.gather(
            *(websocket.send_json(notification) for websocket in connections),
            return_exceptions=True,
        )
        for websocket, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.warning(f"Dropping WebSocket in context {task.context_id}: {result}")
                self.remove(task.context_id, websocket)
