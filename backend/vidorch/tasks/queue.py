"""Concurrency-bounded FIFO task queue with retries.

enqueue_task() never waits for the work to finish: it records the entry
and admits as many entries as the concurrency limit allows. Completion is
observed through the task store's listeners. A task id is never processed
twice at the same time; an entry for a busy id stays in the backlog until
the running one settles.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from vidorch.errors import NonRetryableError, TaskNotFoundError, TaskTerminalError
from vidorch.orchestrator.io import OrchestrationIO, OrchestrationProgress, apply_progress
from vidorch.orchestrator.state import OrchestrationStep
from vidorch.schemas.a2a import Task, TaskState
from vidorch.tasks.store import TaskStore

logger = logging.getLogger(__name__)

WorkFunction = Callable[[str, Optional[OrchestrationIO]], Awaitable[None]]


@dataclass
class _Entry:
    task_id: str
    io: Optional[OrchestrationIO] = None


class TaskQueue:
    """Admits queued tasks to a work function under a concurrency cap."""

    def __init__(
        self,
        store: TaskStore,
        work: WorkFunction,
        max_concurrent: int = 2,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._store = store
        self._work = work
        self.max_concurrent = max_concurrent
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        self._backlog: deque[_Entry] = deque()
        self._running: set[str] = set()
        self._jobs: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    @property
    def processing_count(self) -> int:
        return len(self._running)

    @property
    def pending_count(self) -> int:
        return len(self._backlog)

    def is_processing(self, task_id: str) -> bool:
        return task_id in self._running

    def enqueue_task(self, task: Union[Task, str], io: Optional[OrchestrationIO] = None) -> None:
        """Append a task to the backlog and admit what fits.

        Returns once admission was attempted; do not treat the return as
        completion of the work.
        """
        if self._closed:
            raise RuntimeError("Task queue is shut down")
        task_id = task if isinstance(task, str) else task.id
        self._backlog.append(_Entry(task_id=task_id, io=io))
        self._idle.clear()
        logger.debug(f"Enqueued task {task_id} (pending={self.pending_count})")
        self._drain()

    def _drain(self) -> None:
        while len(self._running) < self.max_concurrent:
            entry = self._next_admissible()
            if entry is None:
                break
            self._running.add(entry.task_id)
            job = asyncio.create_task(self._run(entry), name=f"task-{entry.task_id}")
            self._jobs.add(job)
            job.add_done_callback(self._jobs.discard)

        if not self._running and not self._backlog:
            self._idle.set()

    def _next_admissible(self) -> Optional[_Entry]:
        for index, entry in enumerate(self._backlog):
            if entry.task_id not in self._running:
                del self._backlog[index]
                return entry
        return None

    async def _run(self, entry: _Entry) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_fixed(self.retry_delay),
                retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(NonRetryableError),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    await self._work(entry.task_id, entry.io)
        except Exception as e:
            logger.error(f"Task {entry.task_id} failed: {e}")
            await self._mark_failed(entry.task_id, e)
        finally:
            self._running.discard(entry.task_id)
            if not self._closed:
                self._drain()
            elif not self._running:
                self._idle.set()

    async def _mark_failed(self, task_id: str, error: Exception) -> None:
        progress = OrchestrationProgress(
            state=TaskState.FAILED,
            text=f"Task failed: {error}",
            metadata={"current_step": OrchestrationStep.FAILED.value},
        )
        try:
            await self._store.modify_task(task_id, lambda task: apply_progress(task, progress))
        except (TaskNotFoundError, TaskTerminalError) as e:
            logger.info(f"Not marking task {task_id} failed: {e}")

    async def wait_until_idle(self) -> None:
        """Wait until the backlog is empty and nothing is running."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Stop admitting work and cancel running jobs."""
        self._closed = True
        self._backlog.clear()
        jobs = list(self._jobs)
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)
        self._running.clear()
        self._idle.set()
