"""WebSocket transport.

Clients connect to /ws?contextId=...&mode=direct and exchange JSON-RPC
frames. Every task change in the context is pushed as a tasks/status
notification. In direct mode the engine waits on the connection for the
user's reply instead of going back through the queue.
"""

import json
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from vidorch.api.jsonrpc import (
    METHOD_SEND,
    METHOD_SEND_SUBSCRIBE,
    PARSE_ERROR,
    JSONRPCError,
    TaskRpcHandler,
    IOFactory,
    error_response,
    parse_request,
)
from vidorch.context import AppContext
from vidorch.orchestrator.io import DirectChannelIO
from vidorch.schemas.a2a import new_id

logger = logging.getLogger(__name__)

router = APIRouter()


async def handle_frame(
    handler: TaskRpcHandler, raw: str, context_id: str, io_factory: Optional[IOFactory] = None
) -> dict:
    """Process one JSON-RPC text frame and return the response envelope."""
    body = None
    try:
        try:
            body = json.loads(raw)
        except ValueError as e:
            raise JSONRPCError(PARSE_ERROR, "Parse error") from e
        rpc = parse_request(body)
    except JSONRPCError as e:
        request_id = body.get("id") if isinstance(body, dict) else None
        return error_response(request_id, e)

    # a socket streams every change already, so sendSubscribe is a plain send
    if rpc.method == METHOD_SEND_SUBSCRIBE:
        rpc.method = METHOD_SEND
    if rpc.method == METHOD_SEND:
        params = dict(rpc.params or {})
        if not any(key in params for key in ("contextId", "sessionId", "context_id")):
            params["contextId"] = context_id
        rpc.params = params
    return await handler.dispatch(rpc, io_factory)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    context_id: Optional[str] = Query(default=None, alias="contextId"),
    mode: Literal["queue", "direct"] = Query(default="queue"),
):
    context: AppContext = websocket.app.state.context
    context_id = context_id or new_id()
    await websocket.accept()
    context.sessions.add(context_id, websocket)

    channels: list[DirectChannelIO] = []
    io_factory: Optional[IOFactory] = None
    if mode == "direct":
        def io_factory(task_id: str) -> DirectChannelIO:
            channel = DirectChannelIO(context.store, task_id, context.waits)
            channels.append(channel)
            return channel

    handler = TaskRpcHandler(context)
    try:
        while True:
            raw = await websocket.receive_text()
            await websocket.send_json(await handle_frame(handler, raw, context_id, io_factory))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected from context {context_id}")
    finally:
        context.sessions.remove(context_id, websocket)
        # paused tasks fall back to the queue path
        for channel in channels:
            channel.detach()
