"""Orchestration I/O port.

The step engine reports progress through an OrchestrationIO and never
touches transports directly. QueueBoundIO persists progress into the task
store, which fans it out to SSE, webhook and WebSocket listeners.
DirectChannelIO additionally lets the engine wait inline for the user's
reply on a live connection.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from vidorch.schemas.a2a import (
    Artifact,
    Task,
    TaskMetadata,
    TaskState,
    TaskStatus,
    text_message,
)
from vidorch.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationProgress:
    """One progress report from the engine.

    artifacts, when given, replaces the task's artifact list. metadata is
    merged into the task metadata; keys are TaskMetadata field names or
    extension keys.
    """

    state: TaskState
    text: str
    artifacts: Optional[list[Artifact]] = None
    metadata: Optional[dict[str, Any]] = None


class OrchestrationIO(ABC):
    """Port through which the engine reports progress."""

    @abstractmethod
    async def on_progress(self, progress: OrchestrationProgress) -> None:
        ...


class InteractiveIO(OrchestrationIO):
    """I/O port that can collect the user's reply to a pause inline."""

    @abstractmethod
    async def on_input_required(self, prompt: str, artifacts: list[Artifact]) -> Optional[str]:
        """Wait for and return the user's reply to `prompt`.

        Returns None when the channel closed before a reply arrived.
        """
        ...


def apply_progress(task: Task, progress: OrchestrationProgress) -> Task:
    """Apply a progress report to a task copy and return it."""
    message = text_message(
        "agent", progress.text, task_id=task.id, context_id=task.context_id
    )
    task.status = TaskStatus(state=progress.state, message=message)
    task.history.append(message)
    if progress.artifacts is not None:
        task.artifacts = list(progress.artifacts)
    if progress.metadata:
        merged = {**task.metadata.model_dump(), **progress.metadata}
        task.metadata = TaskMetadata.model_validate(merged)
    return task


class QueueBoundIO(OrchestrationIO):
    """Persists progress into the task store.

    Status, agent message, artifacts and metadata are written in one
    atomic store modification. A missing task raises TaskNotFoundError.
    """

    def __init__(self, store: TaskStore, task_id: str):
        self.store = store
        self.task_id = task_id

    async def on_progress(self, progress: OrchestrationProgress) -> None:
        await self.store.modify_task(
            self.task_id, lambda task: apply_progress(task, progress)
        )
        logger.debug(f"Task {self.task_id} -> {progress.state.value}: {progress.text[:80]}")


class InputWaitRegistry:
    """Pending user-input waits keyed by context or task id.

    Transports resolve a wait with the user's text; the engine awaits it.
    """

    def __init__(self) -> None:
        self._waits: dict[str, asyncio.Future] = {}

    def register(self, key: str) -> asyncio.Future:
        """Create a wait for `key`, cancelling any previous one."""
        previous = self._waits.pop(key, None)
        if previous is not None and not previous.done():
            previous.cancel()
        future = asyncio.get_running_loop().create_future()
        self._waits[key] = future
        return future

    def is_waiting(self, key: str) -> bool:
        future = self._waits.get(key)
        return future is not None and not future.done()

    def resolve(self, key: str, text: str) -> bool:
        """Deliver `text` to the wait for `key`. Returns False if none is pending."""
        future = self._waits.pop(key, None)
        if future is None or future.done():
            return False
        future.set_result(text)
        return True

    def pending_keys(self) -> list[str]:
        return [key for key, future in self._waits.items() if not future.done()]

    def cancel(self, key: str) -> None:
        future = self._waits.pop(key, None)
        if future is not None and not future.done():
            future.cancel()

    def discard(self, key: str, future: asyncio.Future) -> None:
        if self._waits.get(key) is future:
            del self._waits[key]


class DirectChannelIO(QueueBoundIO, InteractiveIO):
    """QueueBoundIO that also waits inline for replies on a live channel.

    Once detached, pauses no longer wait: the engine returns and the task
    stays INPUT_REQUIRED until feedback arrives through the queue.
    """

    def __init__(self, store: TaskStore, task_id: str, waits: InputWaitRegistry, key: Optional[str] = None):
        super().__init__(store, task_id)
        self.waits = waits
        self.key = key or task_id
        self.closed = False
        self._wait: Optional[asyncio.Future] = None

    def detach(self) -> None:
        """Stop waiting on the channel and end this channel's pending wait."""
        self.closed = True
        wait, self._wait = self._wait, None
        if wait is not None and not wait.done():
            self.waits.discard(self.key, wait)
            wait.cancel()

    async def on_progress(self, progress: OrchestrationProgress) -> None:
        # the wait exists before listeners learn about the pause
        if progress.state == TaskState.INPUT_REQUIRED and not self.closed:
            self._wait = self.waits.register(self.key)
        await super().on_progress(progress)

    async def on_input_required(self, prompt: str, artifacts: list[Artifact]) -> Optional[str]:
        if self.closed:
            return None
        future = self._wait
        if future is None:
            future = self._wait = self.waits.register(self.key)
        logger.info(f"Task {self.task_id} waiting for direct input on {self.key}")
        try:
            return await future
        except asyncio.CancelledError:
            if asyncio.current_task().cancelling():
                raise
            logger.info(f"Task {self.task_id}: wait on {self.key} ended without a reply")
            return None
        finally:
            self.waits.discard(self.key, future)
            if self._wait is future:
                self._wait = None
