"""Pydantic schemas for the A2A task protocol.

Tasks, messages, parts and artifacts exchanged with clients and with the
remote generation agents. Models serialise with camelCase aliases
(contextId, messageId, currentStep) and accept snake_case on input.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vidorch.orchestrator.state import OrchestrationStep


def utc_now() -> str:
    """ISO-8601 timestamp used for status snapshots."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class A2AModel(BaseModel):
    """Base model with camelCase wire aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dump as JSON-compatible dict using wire aliases."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaskState(str, Enum):
    """Lifecycle states of a task."""

    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED})


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------

def _legacy_part_kind(v: Any) -> Any:
    """Accept the older `type` discriminator used by some agents."""
    if isinstance(v, dict) and "kind" not in v and "type" in v:
        v = dict(v)
        v["kind"] = v.pop("type")
    return v


class TextPart(A2AModel):
    kind: Literal["text"] = "text"
    text: str


class FilePart(A2AModel):
    kind: Literal["file"] = "file"
    uri: str
    mime_type: Optional[str] = None
    name: Optional[str] = None


class DataPart(A2AModel):
    kind: Literal["data"] = "data"
    data: dict[str, Any]


Part = Annotated[Union[TextPart, FilePart, DataPart], BeforeValidator(_legacy_part_kind)]


# ---------------------------------------------------------------------------
# Messages, status, artifacts
# ---------------------------------------------------------------------------

class Message(A2AModel):
    """A user or agent turn in a task's history."""

    role: Literal["user", "agent"]
    parts: list[Part]
    message_id: str = Field(default_factory=new_id)
    task_id: Optional[str] = None
    context_id: Optional[str] = None
    kind: Literal["message"] = "message"

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))


def text_message(role: str, text: str, **kwargs) -> Message:
    """Build a single-part text message."""
    return Message(role=role, parts=[TextPart(text=text)], **kwargs)


class TaskStatus(A2AModel):
    state: TaskState
    timestamp: str = Field(default_factory=utc_now)
    message: Optional[Message] = None


class Artifact(A2AModel):
    """Generation output attached to a task.

    metadata["step"] records the OrchestrationStep that produced it.
    """

    artifact_id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    parts: list[Part]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def step(self) -> Optional[str]:
        return self.metadata.get("step")

    def data(self) -> dict[str, Any]:
        """Merged payload of all data parts."""
        merged: dict[str, Any] = {}
        for part in self.parts:
            if isinstance(part, DataPart):
                merged.update(part.data)
        return merged


class TaskMetadata(A2AModel):
    """Known metadata fields plus an open extension map.

    current_step is the state machine position reentry resumes from. It is
    kept as a plain string so a bad value reaches the engine, which fails
    the task with UnknownStepError.
    step_input carries a feedback override for the current step; it is
    kept until the step succeeds so queue retries see the same input.
    step_request is the input the most recent run of the step used.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    current_step: str = OrchestrationStep.GENERATE_SONG.value
    step_input: Optional[dict[str, Any]] = None
    step_request: Optional[dict[str, Any]] = None


class Task(A2AModel):
    """Unit of orchestration work."""

    id: str = Field(default_factory=new_id)
    context_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("contextId", "sessionId", "context_id"),
        serialization_alias="contextId",
    )
    status: TaskStatus = Field(default_factory=lambda: TaskStatus(state=TaskState.SUBMITTED))
    history: list[Message] = Field(default_factory=list)
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)
    artifacts: list[Artifact] = Field(default_factory=list)
    kind: Literal["task"] = "task"

    @property
    def is_terminal(self) -> bool:
        return self.status.state in TERMINAL_STATES

    def last_user_message(self) -> Optional[Message]:
        """Most recent role=user message in history."""
        for message in reversed(self.history):
            if message.role == "user":
                return message
        return None

    def last_agent_message(self) -> Optional[Message]:
        for message in reversed(self.history):
            if message.role == "agent":
                return message
        return None

    def pending_reply(self) -> Optional[Message]:
        """Latest user message sent after the most recent agent message."""
        for message in reversed(self.history):
            if message.role == "agent":
                return None
            if message.role == "user":
                return message
        return None


# ---------------------------------------------------------------------------
# Agent cards
# ---------------------------------------------------------------------------

class AgentCapabilities(A2AModel):
    streaming: bool = False
    push_notifications: bool = False
    state_transition_history: bool = False


class AgentProvider(A2AModel):
    organization: str
    url: Optional[str] = None


class AgentSkill(A2AModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    name: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    examples: list[Any] = Field(default_factory=list)
    input_modes: Optional[list[str]] = None
    output_modes: Optional[list[str]] = None
    parameters: Optional[Any] = None
    returns: Optional[dict[str, Any]] = None


class AgentCard(A2AModel):
    """Discovery document served at /.well-known/agent.json."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str
    description: str = ""
    url: str = ""
    version: str = "1.0.0"
    provider: Optional[AgentProvider] = None
    documentation_url: Optional[str] = None
    capabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    authentication: Optional[dict[str, Any]] = None
    default_input_modes: list[str] = Field(default_factory=lambda: ["text/plain"])
    default_output_modes: list[str] = Field(default_factory=lambda: ["text/plain"])
    skills: list[AgentSkill] = Field(default_factory=list)

    def skill(self, skill_id: Optional[str] = None) -> Optional[AgentSkill]:
        """Return the skill with `skill_id`, falling back to the first skill."""
        if skill_id:
            for s in self.skills:
                if s.id == skill_id:
                    return s
        return self.skills[0] if self.skills else None
