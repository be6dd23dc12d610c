"""Tests for the task queue: concurrency cap, retries and per-task exclusion."""

import asyncio
from collections import Counter

import pytest

from conftest import FakeCollaborators, FakeInterpreter, new_task
from vidorch.api.jsonrpc import FEEDBACK_FAILED, JSONRPCError, SendTaskParams, TaskRpcHandler
from vidorch.context import AppContext
from vidorch.errors import TaskValidationError
from vidorch.orchestrator.io import OrchestrationProgress, apply_progress
from vidorch.orchestrator.state import OrchestrationStep
from vidorch.schemas.a2a import TaskState
from vidorch.tasks.queue import TaskQueue
from vidorch.tasks.store import TaskStore


async def complete(store: TaskStore, task_id: str) -> None:
    done = OrchestrationProgress(state=TaskState.COMPLETED, text="done")
    await store.modify_task(task_id, lambda t: apply_progress(t, done))


@pytest.mark.asyncio
async def test_never_more_than_max_concurrent():
    store = TaskStore()
    active = 0
    peak = 0
    samples = []

    async def work(task_id, io):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        await complete(store, task_id)

    queue = TaskQueue(store, work, max_concurrent=2, retry_delay=0)
    for i in range(5):
        await store.create_task(new_task(f"t{i}"))
    for i in range(5):
        queue.enqueue_task(f"t{i}")

    assert queue.processing_count == 2
    assert queue.pending_count == 3

    async def sample():
        while queue.processing_count or queue.pending_count:
            samples.append(queue.processing_count)
            await asyncio.sleep(0.001)

    await asyncio.gather(sample(), queue.wait_until_idle())

    assert peak == 2
    assert max(samples) == 2
    assert all(store.get_task(f"t{i}").status.state == TaskState.COMPLETED for i in range(5))


@pytest.mark.asyncio
async def test_failing_work_is_retried_then_marked_failed():
    store = TaskStore()
    attempts = Counter()

    async def work(task_id, io):
        attempts[task_id] += 1
        raise RuntimeError("agent down")

    queue = TaskQueue(store, work, max_concurrent=1, max_retries=3, retry_delay=0)
    await store.create_task(new_task())
    queue.enqueue_task("task-1")
    await queue.wait_until_idle()

    task = store.get_task("task-1")
    assert attempts["task-1"] == 4
    assert task.status.state == TaskState.FAILED
    assert "agent down" in task.status.message.text
    assert task.metadata.current_step == "FAILED"


@pytest.mark.asyncio
async def test_non_retryable_errors_fail_immediately():
    store = TaskStore()
    attempts = Counter()

    async def work(task_id, io):
        attempts[task_id] += 1
        raise TaskValidationError("empty prompt")

    queue = TaskQueue(store, work, max_retries=3, retry_delay=0)
    await store.create_task(new_task())
    queue.enqueue_task("task-1")
    await queue.wait_until_idle()

    assert attempts["task-1"] == 1
    assert store.get_task("task-1").status.state == TaskState.FAILED


@pytest.mark.asyncio
async def test_same_task_never_runs_twice_at_once():
    store = TaskStore()
    active = Counter()
    peak = Counter()
    runs = Counter()

    async def work(task_id, io):
        active[task_id] += 1
        peak[task_id] = max(peak[task_id], active[task_id])
        runs[task_id] += 1
        await asyncio.sleep(0.01)
        active[task_id] -= 1

    queue = TaskQueue(store, work, max_concurrent=3, retry_delay=0)
    await store.create_task(new_task())
    queue.enqueue_task("task-1")
    queue.enqueue_task("task-1")
    await queue.wait_until_idle()

    assert runs["task-1"] == 2
    assert peak["task-1"] == 1


@pytest.mark.asyncio
async def test_shutdown_rejects_new_work():
    store = TaskStore()

    async def work(task_id, io):
        await asyncio.sleep(10)

    queue = TaskQueue(store, work)
    await store.create_task(new_task())
    queue.enqueue_task("task-1")
    await queue.shutdown()

    assert queue.processing_count == 0
    with pytest.raises(RuntimeError):
        queue.enqueue_task("task-1")


def test_max_concurrent_must_be_positive():
    async def work(task_id, io):
        pass

    with pytest.raises(ValueError):
        TaskQueue(TaskStore(), work, max_concurrent=0)


@pytest.mark.asyncio
async def test_collaborator_failure_ends_in_failed_after_all_attempts(test_settings):
    collaborators = FakeCollaborators(fail_on={"generate_song"})
    context = AppContext.create(test_settings, collaborators=collaborators, interpreter=FakeInterpreter())

    await context.store.create_task(new_task())
    context.queue.enqueue_task("task-1")
    await context.queue.wait_until_idle()

    task = context.store.get_task("task-1")
    assert collaborators.calls["generate_song"] == test_settings.queue.max_retries + 1
    assert task.status.state == TaskState.FAILED
    assert "generate_song unavailable" in task.status.message.text
    await context.close()


def reply_params(task_id: str, text: str) -> SendTaskParams:
    return SendTaskParams.model_validate({
        "taskId": task_id,
        "message": {"role": "user", "parts": [{"kind": "text", "text": text}]},
    })


@pytest.mark.asyncio
async def test_second_reply_before_processing_is_rejected(test_settings):
    context = AppContext.create(test_settings, collaborators=FakeCollaborators(), interpreter=FakeInterpreter())
    handler = TaskRpcHandler(context)
    await context.store.create_task(new_task())
    context.queue.enqueue_task("task-1")
    await context.queue.wait_until_idle()
    assert context.store.get_task("task-1").status.state == TaskState.INPUT_REQUIRED

    await handler.send(reply_params("task-1", "looks good"))
    with pytest.raises(JSONRPCError) as excinfo:
        await handler.send(reply_params("task-1", "accept"))
    assert excinfo.value.code == FEEDBACK_FAILED
    await context.queue.wait_until_idle()

    task = context.store.get_task("task-1")
    assert task.status.state == TaskState.INPUT_REQUIRED
    assert task.metadata.current_step == OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES.value
    assert [m.text for m in task.history if m.role == "user"][1:] == ["looks good"]
    await context.close()
