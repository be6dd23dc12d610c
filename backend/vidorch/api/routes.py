"""HTTP route handlers: JSON-RPC task protocol, SSE, polling and discovery."""

import logging
from contextlib import AsyncExitStack
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from vidorch.api.agent_card import build_agent_card
from vidorch.api.jsonrpc import (
    INVALID_PARAMS,
    METHOD_SEND_SUBSCRIBE,
    PARSE_ERROR,
    JSONRPCError,
    JSONRPCRequest,
    NotificationConfig,
    SendTaskParams,
    TaskRpcHandler,
    error_response,
    parse_params,
    parse_request,
    success_response,
)
from vidorch.api.streaming import task_event_stream
from vidorch.context import AppContext
from vidorch.services.file_manager import FileManager

logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _request_id(body: Any) -> Any:
    return body.get("id") if isinstance(body, dict) else None


@router.get("/.well-known/agent.json")
async def agent_card(context: AppContext = Depends(get_context)):
    """Orchestrator discovery document."""
    return build_agent_card(context.settings.server.public_url).to_wire()


@router.get("/health")
async def health_check():
    return {"status": "healthy"}


@router.post("/")
@router.post("/tasks/send")
@router.post("/tasks/sendSubscribe")
async def jsonrpc_endpoint(request: Request, context: AppContext = Depends(get_context)):
    """JSON-RPC 2.0 entry point for tasks/send, tasks/sendSubscribe and tasks/get.

    Protocol errors are reported in the response envelope with HTTP 200.
    """
    body: Any = None
    try:
        try:
            body = await request.json()
        except ValueError as e:
            raise JSONRPCError(PARSE_ERROR, "Parse error") from e
        rpc = parse_request(body)
    except JSONRPCError as e:
        logger.warning(f"Rejected JSON-RPC request: {e.code} {e.message}")
        return JSONResponse(error_response(_request_id(body), e))

    if rpc.method == METHOD_SEND_SUBSCRIBE:
        return await _send_subscribe(rpc, context)
    return JSONResponse(await TaskRpcHandler(context).dispatch(rpc))


async def _send_subscribe(rpc: JSONRPCRequest, context: AppContext):
    handler = TaskRpcHandler(context)
    try:
        params: SendTaskParams = parse_params(SendTaskParams, rpc.params)
        notification = params.notification or NotificationConfig()
        if notification.mode == "webhook":
            if not notification.url:
                raise JSONRPCError(INVALID_PARAMS, "Invalid params", "notification.url is required for webhook mode")
            task = await handler.send(params)
            context.push.subscribe_webhook(task.id, notification.url, notification.event_types)
            return JSONResponse(success_response(rpc.id, {"taskId": task.id}))
    except JSONRPCError as e:
        logger.warning(f"{rpc.method} failed: {e.code} {e.message}")
        return JSONResponse(error_response(rpc.id, e))

    # subscribe before the task changes so the stream misses nothing
    stack = AsyncExitStack()
    queue = await stack.enter_async_context(context.store.subscribe())
    try:
        task = await handler.send(params)
    except JSONRPCError as e:
        await stack.aclose()
        logger.warning(f"{rpc.method} failed: {e.code} {e.message}")
        return JSONResponse(error_response(rpc.id, e))

    async def events():
        async with stack:
            async for frame in task_event_stream(queue, task.id, notification.event_types):
                yield frame

    logger.info(f"Streaming events for task {task.id}")
    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/tasks")
async def list_tasks(context: AppContext = Depends(get_context)):
    return [task.to_wire() for task in context.store.list_tasks()]


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, context: AppContext = Depends(get_context)):
    """Polling endpoint returning the full task snapshot."""
    task = context.store.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task.to_wire()


@router.get("/videos/{task_id}")
async def download_video(task_id: str, context: AppContext = Depends(get_context)):
    """Serve a compiled music video kept in local storage."""
    path = FileManager(context.settings.storage.tmp_dir).find_output(task_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return FileResponse(
        path=str(path),
        media_type="video/mp4",
        filename=f"music_video_{task_id}.mp4",
    )
