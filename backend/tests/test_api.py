"""API tests: JSON-RPC over HTTP, SSE, webhooks, polling and WebSockets."""

import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import PROMPT, FakeCollaborators, FakeInterpreter, new_task
from vidorch.api.app import create_app
from vidorch.api.sessions import STATUS_METHOD
from vidorch.api.streaming import PushNotificationService
from vidorch.config import Settings
from vidorch.context import AppContext
from vidorch.orchestrator.state import OrchestrationStep
from vidorch.schemas.a2a import Task, TaskState, TaskStatus, text_message

SONG = OrchestrationStep.GENERATE_SONG.value
SCRIPT = OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES.value


def rpc(method: str, params=None, request_id=1) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}


def send_params(text: str = PROMPT, **extra) -> dict:
    return {"message": {"role": "user", "parts": [{"kind": "text", "text": text}]}, **extra}


def eventually(predicate, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(0.01)
    raise AssertionError("condition not reached in time")


def paused_at(client: TestClient, task_id: str, step: str) -> dict:
    def check():
        task = client.get(f"/tasks/{task_id}").json()
        if task["status"]["state"] == "input-required" and task["metadata"]["currentStep"] == step:
            return task
        return None

    return eventually(check)


def sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for frame in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in frame.split("\n"))
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def client(app_context):
    with TestClient(create_app(app_context)) as client:
        yield client
        client.portal.call(app_context.close)


def put_task(client: TestClient, context: AppContext, task: Task) -> None:
    client.portal.call(context.store.create_task, task)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def test_agent_card(client):
    card = client.get("/.well-known/agent.json").json()
    assert card["name"] == "Music Video Orchestrator Agent"
    assert card["capabilities"]["streaming"] is True
    assert card["capabilities"]["pushNotifications"] is True
    assert card["skills"][0]["id"] == "music-video-orchestration"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


# ---------------------------------------------------------------------------
# tasks/send and polling
# ---------------------------------------------------------------------------

def test_send_creates_task_and_pauses_after_song(client):
    response = client.post("/tasks/send", json=rpc("tasks/send", send_params(contextId="ctx-42")))
    body = response.json()

    assert response.status_code == 200
    assert body["id"] == 1
    task = body["result"]
    assert task["status"]["state"] == "submitted"
    assert task["contextId"] == "ctx-42"
    assert task["history"][0]["role"] == "user"

    paused = paused_at(client, task["id"], SONG)
    assert [a["name"] for a in paused["artifacts"]] == ["song"]
    assert "Do you like the song?" in paused["status"]["message"]["parts"][0]["text"]
    assert [t["id"] for t in client.get("/tasks").json()] == [task["id"]]


def test_feedback_advances_to_next_step(client, collaborators):
    task_id = client.post("/", json=rpc("tasks/send", send_params())).json()["result"]["id"]
    paused_at(client, task_id, SONG)

    reply = client.post("/", json=rpc("tasks/send", send_params("Love it", taskId=task_id), request_id="r2"))
    assert reply.json()["id"] == "r2"
    assert reply.json()["result"]["history"][-1]["role"] == "user"

    paused = paused_at(client, task_id, SCRIPT)
    assert [a["name"] for a in paused["artifacts"]] == ["song", "script"]
    assert collaborators.peak["extract"] == 3


def test_session_id_is_accepted_as_context_id(client):
    result = client.post("/", json=rpc("tasks/send", send_params(sessionId="legacy-session"))).json()["result"]
    assert result["contextId"] == "legacy-session"


def test_feedback_for_unknown_task_changes_nothing(client, app_context):
    body = client.post("/", json=rpc("tasks/send", send_params("accept", taskId="no-such-task"))).json()

    assert body["error"]["code"] == -32000
    assert body["error"]["message"] == "Task not found"
    assert len(app_context.store) == 0


@pytest.mark.parametrize("state", [TaskState.COMPLETED, TaskState.FAILED, TaskState.WORKING])
def test_feedback_rejected_unless_waiting_for_input(client, app_context, state):
    put_task(client, app_context, Task(
        id="task-1",
        context_id="ctx-1",
        status=TaskStatus(state=state),
        history=[text_message("user", PROMPT)],
    ))

    body = client.post("/", json=rpc("tasks/send", send_params("accept", taskId="task-1"))).json()

    assert body["error"]["code"] == -32001
    task = app_context.store.get_task("task-1")
    assert task.status.state == state
    assert len(task.history) == 1


def test_tasks_get(client, app_context):
    put_task(client, app_context, new_task())

    found = client.post("/", json=rpc("tasks/get", {"id": "task-1"})).json()
    missing = client.post("/", json=rpc("tasks/get", {"taskId": "nope"})).json()

    assert found["result"]["id"] == "task-1"
    assert missing["error"]["code"] == -32000


def test_parse_error(client):
    response = client.post("/", content=b"{not json", headers={"content-type": "application/json"})
    assert response.status_code == 200
    assert response.json() == {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}


@pytest.mark.parametrize("body", [
    {"jsonrpc": "1.0", "id": 1, "method": "tasks/send"},
    {"id": 1, "method": "tasks/send"},
    [1, 2, 3],
])
def test_invalid_request(client, body):
    assert client.post("/", json=body).json()["error"]["code"] == -32600


def test_method_not_found(client):
    body = client.post("/", json=rpc("tasks/cancel", {"id": "task-1"}, request_id=7)).json()
    assert body["id"] == 7
    assert body["error"]["code"] == -32601


@pytest.mark.parametrize("params", [
    None,
    {"message": {"role": "user"}},
    send_params("   "),
    send_params(metadata={"currentStep": ["not", "a", "string"]}),
])
def test_invalid_params(client, app_context, params):
    assert client.post("/", json=rpc("tasks/send", params)).json()["error"]["code"] == -32602
    assert len(app_context.store) == 0


def test_unknown_task_returns_404(client):
    response = client.get("/tasks/missing")
    assert response.status_code == 404
    assert response.json()["detail"] == "Task not found"


def test_video_download(client, test_settings, tmp_path):
    assert client.get("/videos/task-1").status_code == 404

    output = tmp_path / "scratch" / "task-1" / "output"
    output.mkdir(parents=True)
    (output / "final.mp4").write_bytes(b"fake-mp4")

    response = client.get("/videos/task-1")
    assert response.status_code == 200
    assert response.content == b"fake-mp4"
    assert response.headers["content-type"] == "video/mp4"


# ---------------------------------------------------------------------------
# tasks/sendSubscribe
# ---------------------------------------------------------------------------

@pytest.fixture
def failing_context(test_settings):
    return AppContext.create(
        test_settings,
        collaborators=FakeCollaborators(fail_on={"generate_song"}),
        interpreter=FakeInterpreter(),
    )


def test_sse_stream_ends_with_error_and_completion(failing_context):
    with TestClient(create_app(failing_context)) as client:
        response = client.post("/tasks/sendSubscribe", json=rpc("tasks/sendSubscribe", send_params()))
        client.portal.call(failing_context.close)

    assert response.headers["content-type"].startswith("text/event-stream")
    events = sse_events(response.text)
    names = [name for name, _ in events]
    assert names[0] == "status_update"
    assert events[0][1]["data"]["status"]["state"] == "submitted"
    assert names[-3:] == ["status_update", "error", "completion"]
    assert "generate_song unavailable" in events[-2][1]["data"]["status"]["message"]["parts"][0]["text"]
    assert events[-1][1]["data"]["final"] is True


def test_sse_stream_filters_event_types(failing_context):
    params = send_params(notification={"mode": "sse", "eventTypes": ["completion"]})
    with TestClient(create_app(failing_context)) as client:
        response = client.post("/", json=rpc("tasks/sendSubscribe", params))
        client.portal.call(failing_context.close)

    assert [name for name, _ in sse_events(response.text)] == ["completion"]


def test_webhook_subscription_delivers_events(client, app_context):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append((str(request.url), json.loads(request.content)))
        return httpx.Response(204)

    app_context.store.remove_status_listener(app_context.push.on_task_update)
    app_context.push = PushNotificationService(transport=httpx.MockTransport(handler))
    app_context.store.add_status_listener(app_context.push.on_task_update)

    params = send_params(notification={"mode": "webhook", "url": "https://hooks.test/video"})
    body = client.post("/", json=rpc("tasks/sendSubscribe", params)).json()
    task_id = body["result"]["taskId"]

    eventually(lambda: any(event["type"] == "artifact" for _, event in received))
    assert {url for url, _ in received} == {"https://hooks.test/video"}
    assert all(event["taskId"] == task_id for _, event in received)
    artifact = next(event for _, event in received if event["type"] == "artifact")
    assert artifact["data"]["artifacts"][0]["name"] == "song"
    assert app_context.push.is_subscribed(task_id)


def test_webhook_mode_requires_url(client, app_context):
    params = send_params(notification={"mode": "webhook"})
    body = client.post("/", json=rpc("tasks/sendSubscribe", params)).json()
    assert body["error"]["code"] == -32602
    assert len(app_context.store) == 0


def test_send_subscribe_feedback_error_is_json(client):
    params = send_params("accept", taskId="ghost")
    response = client.post("/", json=rpc("tasks/sendSubscribe", params))
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["error"]["code"] == -32000


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------

def receive_until(ws, predicate, limit: int = 200) -> list[dict]:
    frames = []
    for _ in range(limit):
        frame = ws.receive_json()
        frames.append(frame)
        if predicate(frame):
            return frames
    raise AssertionError("expected frame never arrived")


def status_paused_at(step: str):
    def check(frame: dict) -> bool:
        if frame.get("method") != STATUS_METHOD:
            return False
        task = frame["params"]
        return task["status"]["state"] == "input-required" and task["metadata"]["currentStep"] == step

    return check


def response_to(request_id):
    return lambda frame: frame.get("id") == request_id and "method" not in frame


def test_websocket_queue_mode(client, app_context):
    with client.websocket_connect("/ws?contextId=ctx-ws") as ws:
        ws.send_text(json.dumps(rpc("tasks/send", send_params(), request_id=1)))
        frames = receive_until(ws, status_paused_at(SONG))

        response = next(frame for frame in frames if response_to(1)(frame))
        task_id = response["result"]["id"]
        assert response["result"]["contextId"] == "ctx-ws"
        assert frames[0]["method"] == STATUS_METHOD
        assert frames[0]["params"]["status"]["state"] == "submitted"
        assert app_context.sessions.connection_count("ctx-ws") == 1

        ws.send_text(json.dumps(rpc("tasks/send", send_params("accept", taskId=task_id), request_id=2)))
        receive_until(ws, status_paused_at(SCRIPT))

    assert app_context.sessions.connection_count("ctx-ws") == 0


def test_websocket_direct_mode_collects_reply_inline(client, app_context, collaborators):
    with client.websocket_connect("/ws?contextId=ctx-direct&mode=direct") as ws:
        ws.send_text(json.dumps(rpc("tasks/sendSubscribe", send_params(), request_id=1)))
        frames = receive_until(ws, status_paused_at(SONG))
        task_id = next(frame for frame in frames if response_to(1)(frame))["result"]["id"]
        assert app_context.waits.is_waiting(task_id)

        ws.send_text(json.dumps(rpc("tasks/send", send_params("accept", taskId=task_id), request_id=2)))
        receive_until(ws, status_paused_at(SCRIPT))

    # the reply went to the waiting engine, not back through the queue
    assert collaborators.calls["generate_song"] == 1
    history = app_context.store.get_task(task_id).history
    assert [m.text for m in history if m.role == "user"] == [PROMPT, "accept"]


def test_websocket_direct_disconnect_frees_the_queue(tmp_path, collaborators, interpreter):
    settings = Settings(
        queue={"max_concurrent": 1, "max_retries": 0, "retry_delay": 0.0},
        storage={"tmp_dir": str(tmp_path / "scratch")},
    )
    context = AppContext.create(settings, collaborators=collaborators, interpreter=interpreter)
    with TestClient(create_app(context)) as client:
        with client.websocket_connect("/ws?contextId=ctx-gone&mode=direct") as ws:
            ws.send_text(json.dumps(rpc("tasks/send", send_params(), request_id=1)))
            frames = receive_until(ws, status_paused_at(SONG))
            abandoned = next(frame for frame in frames if response_to(1)(frame))["result"]["id"]

        eventually(lambda: context.queue.processing_count == 0)
        assert not context.waits.is_waiting(abandoned)

        other = client.post("/", json=rpc("tasks/send", send_params())).json()["result"]["id"]
        paused_at(client, other, SONG)

        # the abandoned task is still paused and resumes over HTTP
        assert client.get(f"/tasks/{abandoned}").json()["status"]["state"] == "input-required"
        client.post("/", json=rpc("tasks/send", send_params("accept", taskId=abandoned)))
        paused_at(client, abandoned, SCRIPT)
        client.portal.call(context.close)


def test_websocket_rejects_garbage_frames(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["error"]["code"] == -32700
        ws.send_text(json.dumps(rpc("tasks/get", {"id": "missing"}, request_id=3)))
        assert ws.receive_json() == {
            "jsonrpc": "2.0",
            "id": 3,
            "error": {"code": -32000, "message": "Task not found", "data": {"taskId": "missing"}},
        }
