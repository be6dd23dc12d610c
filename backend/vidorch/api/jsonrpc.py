"""JSON-RPC 2.0 task protocol.

Parses request envelopes, validates params and applies tasks/send and
tasks/get against the application context. Shared by the HTTP routes and
the WebSocket endpoint; transports decide how to deliver the response.
"""

import logging
from typing import Any, Callable, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from vidorch.api.streaming import EventType
from vidorch.context import AppContext
from vidorch.errors import TaskStateError, TaskTerminalError
from vidorch.orchestrator.io import OrchestrationIO
from vidorch.schemas.a2a import A2AModel, Message, Task, TaskMetadata, TaskState, new_id

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
TASK_NOT_FOUND = -32000
FEEDBACK_FAILED = -32001

METHOD_SEND = "tasks/send"
METHOD_SEND_SUBSCRIBE = "tasks/sendSubscribe"
METHOD_GET = "tasks/get"
METHODS = {METHOD_SEND, METHOD_SEND_SUBSCRIBE, METHOD_GET}

RequestId = Union[str, int, None]
IOFactory = Callable[[str], Optional[OrchestrationIO]]


class JSONRPCError(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class JSONRPCRequest(BaseModel):
    jsonrpc: Literal["2.0"]
    id: RequestId = None
    method: str
    params: Optional[dict[str, Any]] = None


class NotificationConfig(A2AModel):
    mode: Literal["sse", "webhook"] = "sse"
    url: Optional[str] = None
    event_types: list[EventType] = Field(default_factory=list)


class SendTaskParams(A2AModel):
    message: Message
    task_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("taskId", "task_id", "id"))
    context_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("contextId", "sessionId", "context_id")
    )
    metadata: Optional[dict[str, Any]] = None
    accepted_output_modes: Optional[list[str]] = None
    notification: Optional[NotificationConfig] = None

    @property
    def target_task_id(self) -> Optional[str]:
        return self.task_id or self.message.task_id


class GetTaskParams(A2AModel):
    id: str = Field(validation_alias=AliasChoices("id", "taskId", "task_id"))


def success_response(request_id: RequestId, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(request_id: RequestId, error: JSONRPCError) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()}


def parse_request(body: Any) -> JSONRPCRequest:
    """Validate a decoded JSON-RPC envelope.

    Raises:
        JSONRPCError: INVALID_REQUEST or METHOD_NOT_FOUND.
    """
    try:
        request = JSONRPCRequest.model_validate(body)
    except ValidationError as e:
        raise JSONRPCError(INVALID_REQUEST, "Invalid Request", e.errors(include_url=False, include_context=False)) from e
    if request.method not in METHODS:
        raise JSONRPCError(METHOD_NOT_FOUND, f"Method not found: {request.method}")
    return request


def parse_params(model: type[BaseModel], params: Optional[dict]) -> Any:
    try:
        return model.model_validate(params or {})
    except ValidationError as e:
        raise JSONRPCError(INVALID_PARAMS, "Invalid params", e.errors(include_url=False, include_context=False)) from e


class TaskRpcHandler:
    """Applies task protocol methods to an AppContext."""

    def __init__(self, context: AppContext):
        self.context = context

    async def send(self, params: SendTaskParams, io_factory: Optional[IOFactory] = None) -> Task:
        """Create a task, or deliver feedback to an existing one."""
        if params.target_task_id:
            return await self._feedback(params, io_factory)
        return await self._create(params, io_factory)

    async def _create(self, params: SendTaskParams, io_factory: Optional[IOFactory]) -> Task:
        if not params.message.text.strip():
            raise JSONRPCError(INVALID_PARAMS, "Invalid params", "message must contain text")

        task_id = new_id()
        context_id = params.context_id or params.message.context_id or new_id()
        message = params.message.model_copy(update={"task_id": task_id, "context_id": context_id, "role": "user"})
        try:
            metadata = TaskMetadata.model_validate(params.metadata or {})
        except ValidationError as e:
            raise JSONRPCError(INVALID_PARAMS, "Invalid params", e.errors(include_url=False, include_context=False)) from e

        task = await self.context.store.create_task(
            Task(id=task_id, context_id=context_id, history=[message], metadata=metadata)
        )
        logger.info(f"Created task {task_id} in context {context_id}")
        self.context.queue.enqueue_task(task_id, io_factory(task_id) if io_factory else None)
        return task

    async def _feedback(self, params: SendTaskParams, io_factory: Optional[IOFactory]) -> Task:
        task_id = params.target_task_id
        store = self.context.store
        task = store.get_task(task_id)
        if task is None:
            raise JSONRPCError(TASK_NOT_FOUND, "Task not found", {"taskId": task_id})
        if task.is_terminal:
            raise JSONRPCError(
                FEEDBACK_FAILED, f"Task {task_id} is already {task.status.state.value}", {"taskId": task_id}
            )
        if task.status.state != TaskState.INPUT_REQUIRED:
            raise JSONRPCError(
                FEEDBACK_FAILED,
                f"Task {task_id} is {task.status.state.value}, not waiting for input",
                {"taskId": task_id},
            )

        # a live direct channel collects the reply itself
        if self.context.waits.resolve(task_id, params.message.text):
            logger.info(f"Delivered direct reply to task {task_id}")
            return store.get_task(task_id)

        message = params.message.model_copy(
            update={"task_id": task_id, "context_id": task.context_id, "role": "user"}
        )

        def append_reply(current: Task) -> None:
            if current.status.state != TaskState.INPUT_REQUIRED:
                raise TaskStateError(
                    f"Task {task_id} is {current.status.state.value}, not waiting for input"
                )
            if current.pending_reply() is not None:
                raise TaskStateError(f"Task {task_id} already has a reply waiting to be processed")
            current.history.append(message)

        try:
            task = await store.modify_task(task_id, append_reply)
        except (TaskTerminalError, TaskStateError) as e:
            raise JSONRPCError(FEEDBACK_FAILED, str(e), {"taskId": task_id}) from e
        logger.info(f"Feedback received for task {task_id}")
        self.context.queue.enqueue_task(task_id, io_factory(task_id) if io_factory else None)
        return task

    def get(self, params: GetTaskParams) -> Task:
        task = self.context.store.get_task(params.id)
        if task is None:
            raise JSONRPCError(TASK_NOT_FOUND, "Task not found", {"taskId": params.id})
        return task

    async def dispatch(self, request: JSONRPCRequest, io_factory: Optional[IOFactory] = None) -> dict:
        """Run a non-streaming method and return the response envelope."""
        try:
            if request.method == METHOD_GET:
                task = self.get(parse_params(GetTaskParams, request.params))
            else:
                task = await self.send(parse_params(SendTaskParams, request.params), io_factory)
        except JSONRPCError as e:
            logger.warning(f"{request.method} failed: {e.code} {e.message}")
            return error_response(request.id, e)
        return success_response(request.id, task.to_wire())
