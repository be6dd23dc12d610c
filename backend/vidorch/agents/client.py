"""Async client for remote A2A generation agents.

Provides:
- Agent card discovery (GET /.well-known/agent.json)
- Task submission via JSON-RPC tasks/send
- Status polling (GET /tasks/{id}) until the remote task settles

Usage:
    client = A2AAgentClient("http://localhost:8001")
    card = await client.fetch_agent_card()
    result = await client.run_task("an upbeat synthwave song", metadata={"duration": 60})
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from vidorch.errors import CollaboratorError
from vidorch.schemas.a2a import AgentCard

logger = logging.getLogger(__name__)

_SETTLED_STATES = {"completed", "failed", "cancelled", "canceled", "rejected"}


class A2AAgentClient:
    """Async client for one remote A2A agent."""

    def __init__(
        self,
        base_url: str,
        *,
        poll_interval: float = 2.0,
        poll_max: int = 120,
        request_timeout: float = 30.0,
        send_attempts: int = 3,
        send_retry_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.poll_max = poll_max
        self.request_timeout = request_timeout
        self.send_attempts = send_attempts
        self.send_retry_delay = send_retry_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                follow_redirects=True,
                timeout=httpx.Timeout(self.request_timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def fetch_agent_card(self) -> AgentCard:
        """Fetch and validate the agent's discovery document."""
        logger.info("GET %s/.well-known/agent.json", self.base_url)
        try:
            response = await self.client.get("/.well-known/agent.json")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CollaboratorError(f"Failed to fetch agent card from {self.base_url}: {e}") from e
        card = AgentCard.model_validate(response.json())
        logger.info("  agent card: %s (%d skills)", card.name, len(card.skills))
        return card

    def build_send_request(
        self,
        text: str,
        metadata: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
        accepted_output_modes: Optional[list[str]] = None,
    ) -> dict:
        """Build the JSON-RPC 2.0 body for tasks/send."""
        return {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "tasks/send",
            "params": {
                "sessionId": session_id or str(uuid.uuid4()),
                "message": {
                    "role": "user",
                    "parts": [{"kind": "text", "type": "text", "text": text}],
                },
                "metadata": metadata or {},
                "acceptedOutputModes": accepted_output_modes or ["text"],
            },
        }

    async def send_task(
        self,
        text: str,
        metadata: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
        accepted_output_modes: Optional[list[str]] = None,
    ) -> str:
        """Submit a task and return the remote task id.

        Transport errors are retried with a fixed delay; a JSON-RPC error
        response is not.
        """
        body = self.build_send_request(text, metadata, session_id, accepted_output_modes)
        logger.info("POST %s/tasks/send (%d chars)", self.base_url, len(text))

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.send_attempts),
            wait=wait_fixed(self.send_retry_delay),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                response = await self.client.post("/tasks/send", json=body)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(f"{self.base_url} rejected task: HTTP {response.status_code}") from e

        data = response.json()
        if data.get("error"):
            error = data["error"]
            raise CollaboratorError(
                f"{self.base_url} returned error {error.get('code')}: {error.get('message')}"
            )
        task_id = (data.get("result") or {}).get("id")
        if not task_id:
            raise CollaboratorError(f"Invalid response from {self.base_url}: missing result.id")
        logger.info("  remote task id: %s", task_id)
        return task_id

    async def get_task(self, task_id: str) -> dict:
        response = await self.client.get(f"/tasks/{task_id}")
        response.raise_for_status()
        return response.json()

    async def wait_for_task(self, task_id: str) -> dict:
        """Poll a remote task until it completes.

        Raises:
            CollaboratorError: If the task fails, is cancelled or never settles.
        """
        last_state = None
        for _ in range(self.poll_max):
            data = await self.get_task(task_id)
            # some agents answer with a JSON-RPC envelope
            task = data.get("result", data) if isinstance(data, dict) else {}
            status = task.get("status") or {}
            state = status.get("state")
            if state != last_state:
                logger.info("  remote task %s: %s", task_id, state)
                last_state = state

            if state == "completed":
                return task
            if state in _SETTLED_STATES:
                reason = status.get("error") or _status_text(status) or state
                raise CollaboratorError(f"Remote task {task_id} at {self.base_url} {state}: {reason}")

            await asyncio.sleep(self.poll_interval)

        raise CollaboratorError(
            f"Timed out waiting for remote task {task_id} at {self.base_url} "
            f"after {self.poll_max} polls"
        )

    async def run_task(
        self,
        text: str,
        metadata: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> dict:
        """Send a task and wait for its completed result."""
        task_id = await self.send_task(text, metadata, session_id)
        return await self.wait_for_task(task_id)

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def _status_text(status: dict) -> str:
    message = status.get("message") or {}
    parts = message.get("parts") or []
    return " ".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()
