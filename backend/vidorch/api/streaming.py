"""Task event streaming over SSE and webhooks.

Every task change becomes a short list of events: a status_update, an
artifact event when the artifact list changed, an error event when the task
failed, and a completion event after the final status_update. SSE streams
read them from a store subscription; the push service delivers them to
registered webhook URLs from a store listener.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Iterable, Optional

import httpx

from vidorch.schemas.a2a import Task, TaskState, utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    STATUS_UPDATE = "status_update"
    ARTIFACT = "artifact"
    ERROR = "error"
    COMPLETION = "completion"


ALL_EVENT_TYPES = frozenset(EventType)

TaskEvent = tuple[EventType, dict]


def _artifacts_wire(task: Task) -> list[dict]:
    return [artifact.to_wire() for artifact in task.artifacts]


def task_payload(task: Task, include_artifacts: bool = False) -> dict:
    payload = {
        "id": task.id,
        "status": task.status.to_wire(),
        "final": task.is_terminal,
    }
    if include_artifacts:
        payload["artifacts"] = _artifacts_wire(task)
    return payload


def events_for_update(task: Task, previous: Optional[Task] = None) -> list[TaskEvent]:
    """Translate one task snapshot into events, relative to the previous one."""
    events: list[TaskEvent] = [(EventType.STATUS_UPDATE, task_payload(task))]

    previous_artifacts = _artifacts_wire(previous) if previous is not None else []
    if task.artifacts and _artifacts_wire(task) != previous_artifacts:
        events.append((EventType.ARTIFACT, task_payload(task, include_artifacts=True)))

    if task.status.state == TaskState.FAILED:
        events.append((EventType.ERROR, task_payload(task)))

    if task.is_terminal:
        events.append((EventType.COMPLETION, task_payload(task, include_artifacts=True)))
    return events


def event_envelope(event: EventType, task_id: str, payload: dict) -> dict:
    return {
        "type": event.value,
        "taskId": task_id,
        "timestamp": utc_now(),
        "data": payload,
    }


def format_sse(event: EventType, envelope: dict) -> str:
    return f"event: {event.value}\ndata: {json.dumps(envelope)}\n\n"


def normalize_event_types(event_types: Optional[Iterable[EventType]]) -> frozenset:
    """An empty selection means every event type."""
    selected = frozenset(event_types or ())
    return selected or ALL_EVENT_TYPES


async def task_event_stream(
    queue: asyncio.Queue,
    task_id: str,
    event_types: Optional[Iterable[EventType]] = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for one task from a store subscription queue.

    The subscription must be opened before the task is created or updated
    so that no change is missed. The stream ends after the task's
    completion event.
    """
    wanted = normalize_event_types(event_types)
    previous: Optional[Task] = None
    while True:
        task: Task = await queue.get()
        if task.id != task_id:
            continue
        for event, payload in events_for_update(task, previous):
            if event in wanted:
                yield format_sse(event, event_envelope(event, task_id, payload))
        previous = task
        if task.is_terminal:
            logger.debug(f"SSE stream for task {task_id} finished ({task.status.state.value})")
            return


@dataclass
class WebhookSubscription:
    url: str
    event_types: frozenset
    previous: Optional[Task] = field(default=None, repr=False)


class PushNotificationService:
    """Delivers task events to webhook URLs.

    Register `on_task_update` as a store status listener. Delivery failures
    are logged and never affect the task.
    """

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._subscriptions: dict[str, WebhookSubscription] = {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    def subscribe_webhook(
        self, task_id: str, url: str, event_types: Optional[Iterable[EventType]] = None
    ) -> None:
        self._subscriptions[task_id] = WebhookSubscription(url, normalize_event_types(event_types))
        logger.info(f"Webhook registered for task {task_id}: {url}")

    def unsubscribe(self, task_id: str) -> None:
        self._subscriptions.pop(task_id, None)

    def is_subscribed(self, task_id: str) -> bool:
        return task_id in self._subscriptions

    async def on_task_update(self, task: Task) -> None:
        subscription = self._subscriptions.get(task.id)
        if subscription is None:
            return
        events = events_for_update(task, subscription.previous)
        subscription.previous = task
        for event, payload in events:
            if event in subscription.event_types:
                await self._post(subscription.url, event_envelope(event, task.id, payload))
        if task.is_terminal:
            self.unsubscribe(task.id)

    async def _post(self, url: str, envelope: dict) -> None:
        try:
            response = await self._get_client().post(url, json=envelope)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                f"Webhook delivery of {envelope['type']} for task {envelope['taskId']} "
                f"to {url} failed: {e}"
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
