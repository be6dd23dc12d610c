"""Task processor: the queue's work function.

Dispatches on the persisted task state rather than on who enqueued it, so
the same call serves new tasks, feedback and retries after a failure.
"""

import logging
from typing import Optional

from vidorch.errors import TaskNotFoundError, TaskValidationError
from vidorch.orchestrator.engine import StepEngine
from vidorch.orchestrator.io import OrchestrationIO, QueueBoundIO
from vidorch.schemas.a2a import Task, TaskState
from vidorch.tasks.store import TaskStore

logger = logging.getLogger(__name__)


def validate_new_task(task: Task) -> None:
    """Check a submitted task carries a usable prompt.

    Raises:
        TaskValidationError: If there is no user message or its text is blank.
    """
    message = task.last_user_message()
    if message is None:
        raise TaskValidationError(f"Task {task.id} has no user message")
    if not message.text.strip():
        raise TaskValidationError(f"Task {task.id} has an empty prompt")


class TaskProcessor:
    def __init__(self, store: TaskStore, engine: StepEngine):
        self._store = store
        self._engine = engine

    async def process(self, task_id: str, io: Optional[OrchestrationIO] = None) -> None:
        task = self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        io = io or QueueBoundIO(self._store, task_id)

        state = task.status.state
        logger.debug(f"Processing task {task_id} in state {state.value}")

        if task.is_terminal:
            logger.info(f"Task {task_id} is already {state.value}, skipping")
        elif state == TaskState.SUBMITTED:
            validate_new_task(task)
            await self._engine.run_step(task_id, io)
        elif state == TaskState.INPUT_REQUIRED:
            await self._engine.handle_user_feedback(task_id, io)
        elif state == TaskState.WORKING:
            # a previous attempt failed mid-step
            await self._engine.run_step(task_id, io, override_input=task.metadata.step_input)
