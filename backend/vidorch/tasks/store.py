"""In-memory task store with change notification.

Holds every Task for the lifetime of the process. Each mutation runs under
a per-task asyncio.Lock together with its listener fan-out, so listeners
and subscribers see the updates of one task in the order they were made.
Readers always get deep copies; nothing outside the store can mutate a
stored task in place.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from vidorch.errors import (
    DuplicateTaskError,
    HistoryRewriteError,
    TaskNotFoundError,
    TaskTerminalError,
)
from vidorch.schemas.a2a import Task

logger = logging.getLogger(__name__)

StatusListener = Callable[[Task], Awaitable[None]]
TaskMutator = Callable[[Task], Optional[Task]]


class TaskStore:
    """Keyed task map with listener and subscriber fan-out."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[StatusListener] = []
        self._subscribers: set[asyncio.Queue] = set()

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = self._locks[task_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        """Return a copy of the task, or None if it does not exist."""
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    def list_tasks(self) -> list[Task]:
        """Return copies of all tasks in insertion order."""
        return [task.model_copy(deep=True) for task in self._tasks.values()]

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_task(self, task: Task) -> Task:
        """Insert a new task and notify listeners.

        Raises:
            DuplicateTaskError: If a task with the same id already exists.
        """
        async with self._lock_for(task.id):
            if task.id in self._tasks:
                raise DuplicateTaskError(f"Task {task.id} already exists")
            stored = task.model_copy(deep=True)
            self._tasks[task.id] = stored
            logger.debug(f"Created task {task.id} ({stored.status.state.value})")
            await self._notify(stored)
        return stored.model_copy(deep=True)

    async def update_task(self, task: Task) -> Task:
        """Replace a stored task and notify listeners before returning.

        Raises:
            TaskNotFoundError: If the task id is unknown.
            TaskTerminalError: If the stored task is already terminal.
            HistoryRewriteError: If the new history drops entries.
        """
        async with self._lock_for(task.id):
            self._check_update(task.id, task)
            stored = task.model_copy(deep=True)
            self._tasks[task.id] = stored
            await self._notify(stored)
        return stored.model_copy(deep=True)

    async def modify_task(self, task_id: str, mutator: TaskMutator) -> Task:
        """Atomically read, mutate and write back a task.

        The mutator receives a private copy and either mutates it in place
        or returns a replacement. The same checks as update_task apply.
        """
        async with self._lock_for(task_id):
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            working = current.model_copy(deep=True)
            result = mutator(working)
            updated = result if result is not None else working
            self._check_update(task_id, updated)
            self._tasks[task_id] = updated
            await self._notify(updated)
        return updated.model_copy(deep=True)

    def _check_update(self, task_id: str, new: Task) -> None:
        current = self._tasks.get(task_id)
        if current is None:
            raise TaskNotFoundError(task_id)
        if current.is_terminal:
            raise TaskTerminalError(task_id, current.status.state.value)
        if new.id != task_id:
            raise ValueError(f"Task id cannot change ({task_id} -> {new.id})")
        if len(new.history) < len(current.history):
            raise HistoryRewriteError(
                f"Update to task {task_id} would shrink history "
                f"from {len(current.history)} to {len(new.history)} entries"
            )

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register an async callable invoked with a snapshot on every change."""
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        """Unregister a listener; unknown listeners are ignored."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue]:
        """Yield a queue receiving a snapshot of every task change.

        The subscription is removed when the context exits, so a closing
        stream never receives half-delivered events.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)

    async def _notify(self, task: Task) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(task.model_copy(deep=True))

        listeners = list(self._listeners)
        if not listeners:
            return
        results = await asyncio.gather(
            *(listener(task.model_copy(deep=True)) for listener in listeners),
            return_exceptions=True,
        )
        for listener, result in zip(listeners, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Status listener {getattr(listener, '__name__', listener)!r} "
                    f"failed for task {task.id}: {result}"
                )
