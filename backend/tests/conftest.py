"""Shared fixtures: in-process fake collaborators and feedback interpreter.

Nothing here talks to a network, an LLM or ffmpeg. The fakes count calls
and track how many calls of each kind run at the same time so tests can
assert on fan-out and retries.
"""

import asyncio
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Iterable, Optional

import pytest

from vidorch.config import Settings
from vidorch.context import AppContext
from vidorch.orchestrator.collaborators import AgentRole, Collaborators
from vidorch.orchestrator.feedback import FeedbackContext, FeedbackInterpreter
from vidorch.schemas.a2a import AgentCard, AgentSkill, Task, text_message
from vidorch.schemas.feedback import FeedbackDecision
from vidorch.schemas.generation import (
    Character,
    GeneratedClip,
    GeneratedImage,
    Scene,
    ScriptResult,
    Setting,
    SongResult,
)
from vidorch.services.llm import LLMAdapter
from vidorch.tasks.store import TaskStore

PROMPT = "A cyberpunk rap anthem about AI collaboration"


class FakeCollaborators(Collaborators):
    """Deterministic collaborators.

    Args:
        fail_on: Method names that raise RuntimeError on every call
        delay: Seconds each call sleeps, so concurrent calls overlap
    """

    def __init__(
        self,
        characters: int = 2,
        settings: int = 1,
        scenes: int = 3,
        fail_on: Iterable[str] = (),
        delay: float = 0.01,
    ):
        self.n_characters = characters
        self.n_settings = settings
        self.n_scenes = scenes
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: Counter = Counter()
        self.requests: dict[str, list[dict]] = defaultdict(list)
        self.clip_images: dict[int, list[str]] = {}
        self.active: Counter = Counter()
        self.peak: Counter = Counter()

    async def _call(self, name: str, group: str, request: Optional[dict] = None) -> None:
        self.calls[name] += 1
        if request is not None:
            self.requests[name].append(dict(request))
        self.active[group] += 1
        self.peak[group] = max(self.peak[group], self.active[group])
        try:
            await asyncio.sleep(self.delay)
            if name in self.fail_on:
                raise RuntimeError(f"{name} unavailable")
        finally:
            self.active[group] -= 1

    async def fetch_agent_card(self, role: AgentRole) -> AgentCard:
        self.calls["fetch_agent_card"] += 1
        return AgentCard(
            name=f"{role.value} agent",
            url=f"http://{role.value}.agents.test",
            skills=[AgentSkill(id=f"{role.value}-generation", name=f"{role.value} generation")],
        )

    async def generate_song(self, card: AgentCard, request: dict[str, Any]) -> SongResult:
        await self._call("generate_song", "song", request)
        attempt = self.calls["generate_song"]
        return SongResult(
            title=f"Neon Minds #{attempt}",
            song_url=f"https://cdn.test/song-{attempt}.mp3",
            lyrics="Circuits hum, we rise as one",
            duration=120.0,
        )

    async def generate_script(self, card: AgentCard, song: SongResult, request: dict[str, Any]) -> ScriptResult:
        await self._call("generate_script", "script", request)
        return ScriptResult(script=f"Script for {song.title}")

    async def extract_characters(self, card: AgentCard, script: ScriptResult) -> list[Character]:
        await self._call("extract_characters", "extract")
        return [
            Character(name=f"Character {i}", description=f"Performer number {i}")
            for i in range(self.n_characters)
        ]

    async def extract_settings(self, card: AgentCard, script: ScriptResult) -> list[Setting]:
        await self._call("extract_settings", "extract")
        return [Setting(name=f"Setting {i}", description="Rain-soaked rooftop") for i in range(self.n_settings)]

    async def extract_scenes(self, card: AgentCard, script: ScriptResult) -> list[Scene]:
        await self._call("extract_scenes", "extract")
        # returned out of order on purpose
        return [
            Scene(index=i, prompt=f"Scene {i}", setting_name="setting 0", characters=["character 0"], duration=5)
            for i in reversed(range(self.n_scenes))
        ]

    async def generate_character_image(
        self, card: AgentCard, character: Character, request: dict[str, Any]
    ) -> GeneratedImage:
        await self._call("generate_character_image", "image", request)
        return GeneratedImage(subject_type="character", name=character.name, url=f"https://cdn.test/{character.name}.png")

    async def generate_setting_image(self, card: AgentCard, setting: Setting, request: dict[str, Any]) -> GeneratedImage:
        await self._call("generate_setting_image", "image", request)
        return GeneratedImage(subject_type="setting", name=setting.name, url=f"https://cdn.test/{setting.name}.png")

    async def generate_video_clip(
        self, card: AgentCard, scene: Scene, images: list[GeneratedImage], request: dict[str, Any]
    ) -> GeneratedClip:
        await self._call("generate_video_clip", "clip", request)
        self.clip_images[scene.index] = [image.name for image in images]
        return GeneratedClip(scene_index=scene.index, url=f"https://cdn.test/clip-{scene.index}.mp4")

    async def compile_video(self, task_id: str, clips: list[GeneratedClip], song: SongResult, request: dict[str, Any]) -> Path:
        await self._call("compile_video", "compile", request)
        return Path(f"/tmp/{task_id}/output/final.mp4")

    async def upload_video(self, task_id: str, path: Path) -> str:
        await self._call("upload_video", "compile")
        return f"https://videos.test/{task_id}.mp4"


class ScriptedAdapter(LLMAdapter):
    """LLM adapter answering with queued payloads.

    Each payload is validated against the schema the caller asks for;
    an exception instance is raised instead.
    """

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def generate_text(self, prompt, schema, *, temperature=0.7, system_prompt=None, max_retries=3):
        self.calls.append({
            "prompt": prompt,
            "schema": schema,
            "temperature": temperature,
            "system_prompt": system_prompt,
            "max_retries": max_retries,
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return schema.model_validate(response)


class FakeInterpreter(FeedbackInterpreter):
    """Maps the user's reply to a decision.

    "retry", "accept" and anything starting with "modify" are recognised;
    scripted decisions, when queued, take precedence.
    """

    def __init__(self) -> None:
        self.scripted: list[FeedbackDecision] = []
        self.contexts: list[FeedbackContext] = []

    async def interpret(self, context: FeedbackContext) -> FeedbackDecision:
        self.contexts.append(context)
        if self.scripted:
            return self.scripted.pop(0)
        comment = context.user_comment.strip().lower()
        if comment.startswith("modify"):
            return FeedbackDecision(action="modify", new_input={"prompt": context.user_comment[len("modify"):].strip()})
        if comment in ("retry", "again", "try again"):
            return FeedbackDecision(action="retry")
        return FeedbackDecision(action="accept")


def new_task(task_id: str = "task-1", prompt: str = PROMPT, context_id: str = "ctx-1") -> Task:
    return Task(
        id=task_id,
        context_id=context_id,
        history=[text_message("user", prompt, task_id=task_id, context_id=context_id)],
    )


async def wait_for(predicate, timeout: float = 3.0) -> None:
    """Poll `predicate` on the running loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


async def add_user_reply(store: TaskStore, task_id: str, text: str) -> Task:
    message = text_message("user", text, task_id=task_id)
    return await store.modify_task(task_id, lambda task: task.history.append(message))


@pytest.fixture
def collaborators() -> FakeCollaborators:
    return FakeCollaborators()


@pytest.fixture
def interpreter() -> FakeInterpreter:
    return FakeInterpreter()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        queue={"max_concurrent": 2, "max_retries": 3, "retry_delay": 0.0},
        storage={"tmp_dir": str(tmp_path / "scratch")},
    )


@pytest.fixture
def app_context(test_settings, collaborators, interpreter) -> AppContext:
    return AppContext.create(test_settings, collaborators=collaborators, interpreter=interpreter)
