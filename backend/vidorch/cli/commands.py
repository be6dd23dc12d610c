"""CLI commands for vidorch using Typer and Rich.

- serve: Run the orchestrator API server
- send: Start a music video task and follow it interactively over SSE
- status: Show a task's state, artifacts and latest message
- list: List all tasks of a running server in a table
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import httpx
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vidorch import validate_dependencies
from vidorch.config import settings
from vidorch.schemas.a2a import new_id

app = typer.Typer(name="vidorch", help="Human-in-the-loop music video orchestrator")
console = Console()

_URL_OPTION = typer.Option(None, "--url", "-u", help="Orchestrator base URL (defaults to server.public_url)")


def _base_url(url: Optional[str]) -> str:
    return (url or settings.server.public_url).rstrip("/")


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _get_status_color(state: str) -> str:
    """Get Rich color for a task state."""
    if state == "completed":
        return "green"
    elif state in ("failed", "cancelled"):
        return "red"
    elif state == "input-required":
        return "cyan"
    elif state == "working":
        return "yellow"
    elif state == "submitted":
        return "dim"
    else:
        return "white"


def _message_text(message: Optional[dict]) -> str:
    if not message:
        return ""
    return "\n".join(part.get("text", "") for part in message.get("parts", []) if part.get("kind", part.get("type")) == "text")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to server.host)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port (defaults to server.port)"),
):
    """Run the orchestrator API server."""
    import uvicorn

    _configure_logging()
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    uvicorn.run(
        "vidorch.api.app:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=False,
    )


@app.command()
def send(
    prompt: str = typer.Argument(..., help="Creative prompt for the music video"),
    url: Optional[str] = _URL_OPTION,
    context_id: Optional[str] = typer.Option(None, "--context-id", "-c", help="Conversation context id"),
    auto_accept: bool = typer.Option(False, "--yes", "-y", help="Accept every step without asking"),
):
    """Create a music video task and follow it until it finishes.

    Every pause asks for a reply (accept, retry, or describe changes) which is
    sent back as feedback on the same task.
    """
    _configure_logging()
    try:
        final_state = asyncio.run(_send_async(_base_url(url), prompt, context_id or new_id(), auto_accept))
    except httpx.HTTPError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    if final_state != "completed":
        raise typer.Exit(code=1)


async def _iter_sse(response: httpx.Response) -> AsyncIterator[tuple[str, dict]]:
    """Parse a text/event-stream body into (event, data) pairs."""
    event, data_lines = "message", []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield event, json.loads("\n".join(data_lines))
            event, data_lines = "message", []
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())


async def _send_async(base_url: str, prompt: str, context_id: str, auto_accept: bool) -> Optional[str]:
    """Async implementation of send command. Returns the final task state."""
    request = {
        "jsonrpc": "2.0",
        "id": new_id(),
        "method": "tasks/sendSubscribe",
        "params": {
            "contextId": context_id,
            "message": {"role": "user", "parts": [{"kind": "text", "text": prompt}]},
            "notification": {"mode": "sse"},
        },
    }
    final_state = None
    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None)) as client:
        async with client.stream("POST", f"{base_url}/tasks/sendSubscribe", json=request) as response:
            response.raise_for_status()
            if not response.headers.get("content-type", "").startswith("text/event-stream"):
                body = json.loads(await response.aread())
                console.print(f"[red]Error:[/red] {body.get('error', body)}")
                return None

            async for event, envelope in _iter_sse(response):
                payload = envelope.get("data", {})
                status = payload.get("status", {})
                state = status.get("state", "")
                text = _message_text(status.get("message"))
                color = _get_status_color(state)

                if event == "status_update":
                    console.print(f"[{color}]{state}[/{color}] {text}")
                    if state == "input-required":
                        reply = "accept" if auto_accept else await asyncio.to_thread(typer.prompt, "Your reply", default="accept")
                        await _send_feedback(client, base_url, payload["id"], context_id, reply)
                elif event == "artifact":
                    names = ", ".join(a.get("name", "?") for a in payload.get("artifacts", []))
                    console.print(f"[dim]artifacts:[/dim] {names}")
                elif event == "error":
                    console.print(f"[red]Task failed:[/red] {text}")
                elif event == "completion":
                    final_state = state
                    if state == "completed":
                        console.print(Panel(text, title="[bold]Music Video Ready[/bold]", border_style="green"))
    return final_state


async def _send_feedback(
    client: httpx.AsyncClient, base_url: str, task_id: str, context_id: str, text: str
) -> None:
    request = {
        "jsonrpc": "2.0",
        "id": new_id(),
        "method": "tasks/send",
        "params": {
            "taskId": task_id,
            "contextId": context_id,
            "message": {"role": "user", "parts": [{"kind": "text", "text": text}]},
        },
    }
    response = await client.post(f"{base_url}/tasks/send", json=request)
    response.raise_for_status()
    body = response.json()
    if "error" in body:
        console.print(f"[red]Feedback rejected:[/red] {body['error'].get('message')}")


@app.command()
def status(
    task_id: str = typer.Argument(..., help="Task id"),
    url: Optional[str] = _URL_OPTION,
):
    """Show detailed task status and artifacts."""
    try:
        response = httpx.get(f"{_base_url(url)}/tasks/{task_id}", timeout=30.0)
    except httpx.HTTPError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    if response.status_code == 404:
        console.print(f"[red]Error:[/red] Task not found: {task_id}")
        raise typer.Exit(code=1)
    response.raise_for_status()
    task = response.json()

    state = task["status"]["state"]
    status_color = _get_status_color(state)
    metadata = task.get("metadata", {})
    info_lines = [
        f"[bold]ID:[/bold] {task['id']}",
        f"[bold]Context:[/bold] {task.get('contextId', '')}",
        f"[bold]State:[/bold] [{status_color}]{state}[/{status_color}]",
        f"[bold]Step:[/bold] {metadata.get('currentStep', metadata.get('current_step', ''))}",
        f"[bold]Updated:[/bold] {task['status'].get('timestamp', '')}",
        f"[bold]History:[/bold] {len(task.get('history', []))} messages",
    ]
    artifacts = task.get("artifacts", [])
    if artifacts:
        info_lines.append(f"[bold]Artifacts:[/bold] {', '.join(a.get('name', '?') for a in artifacts)}")
    message = _message_text(task["status"].get("message"))
    if message:
        info_lines.append(f"[bold]Message:[/bold] {message}")

    console.print(Panel("\n".join(info_lines), title="[bold]Task Status[/bold]", border_style="blue"))


@app.command(name="list")
def list_tasks(url: Optional[str] = _URL_OPTION):
    """List all tasks known to a running orchestrator."""
    try:
        response = httpx.get(f"{_base_url(url)}/tasks", timeout=30.0)
        response.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    tasks = response.json()

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Prompt")
    table.add_column("State")
    table.add_column("Step")

    for task in tasks:
        history = task.get("history", [])
        prompt = next((_message_text(m) for m in history if m.get("role") == "user"), "")
        prompt_display = prompt if len(prompt) <= 50 else prompt[:47] + "..."
        state = task["status"]["state"]
        status_color = _get_status_color(state)
        metadata = task.get("metadata", {})
        table.add_row(
            task["id"][:8] + "...",
            prompt_display,
            f"[{status_color}]{state}[/{status_color}]",
            metadata.get("currentStep", metadata.get("current_step", "")),
        )

    console.print(table)


if __name__ == "__main__":
    app()
