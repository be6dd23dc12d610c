"""Interface to the external generation services used by the step engine.

The engine owns ordering, fan-out and concurrency limits; a Collaborators
implementation only performs single calls. Every method may raise; the
engine turns failures into StepExecutionError.
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any

from vidorch.orchestrator.state import OrchestrationStep
from vidorch.schemas.a2a import AgentCard
from vidorch.schemas.generation import (
    Character,
    GeneratedClip,
    GeneratedImage,
    Scene,
    ScriptResult,
    Setting,
    SongResult,
)


class AgentRole(str, Enum):
    """Remote agents the workflow talks to."""

    SONG = "song"
    SCRIPT = "script"
    MEDIA = "media"


# Agent whose output each step produces; compile reuses the media agent card
STEP_ROLES = {
    OrchestrationStep.GENERATE_SONG: AgentRole.SONG,
    OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES: AgentRole.SCRIPT,
    OrchestrationStep.GENERATE_IMAGES: AgentRole.MEDIA,
    OrchestrationStep.GENERATE_VIDEO_CLIPS: AgentRole.MEDIA,
    OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO: AgentRole.MEDIA,
}


class Collaborators(ABC):
    """Single-call operations against song, script and media services."""

    @abstractmethod
    async def fetch_agent_card(self, role: AgentRole) -> AgentCard:
        ...

    @abstractmethod
    async def generate_song(self, card: AgentCard, request: dict[str, Any]) -> SongResult:
        ...

    @abstractmethod
    async def generate_script(
        self, card: AgentCard, song: SongResult, request: dict[str, Any]
    ) -> ScriptResult:
        ...

    @abstractmethod
    async def extract_characters(self, card: AgentCard, script: ScriptResult) -> list[Character]:
        ...

    @abstractmethod
    async def extract_settings(self, card: AgentCard, script: ScriptResult) -> list[Setting]:
        ...

    @abstractmethod
    async def extract_scenes(self, card: AgentCard, script: ScriptResult) -> list[Scene]:
        ...

    @abstractmethod
    async def generate_character_image(
        self, card: AgentCard, character: Character, request: dict[str, Any]
    ) -> GeneratedImage:
        ...

    @abstractmethod
    async def generate_setting_image(
        self, card: AgentCard, setting: Setting, request: dict[str, Any]
    ) -> GeneratedImage:
        ...

    @abstractmethod
    async def generate_video_clip(
        self,
        card: AgentCard,
        scene: Scene,
        images: list[GeneratedImage],
        request: dict[str, Any],
    ) -> GeneratedClip:
        ...

    @abstractmethod
    async def compile_video(
        self,
        task_id: str,
        clips: list[GeneratedClip],
        song: SongResult,
        request: dict[str, Any],
    ) -> Path:
        """Concatenate clips, lay the song over them and return the local file."""
        ...

    @abstractmethod
    async def upload_video(self, task_id: str, path: Path) -> str:
        """Upload a compiled video and return its public URL."""
        ...
