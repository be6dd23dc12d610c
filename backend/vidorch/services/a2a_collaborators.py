"""Collaborators backed by remote A2A agents, an LLM, ffmpeg and an uploader.

Each generation call follows the same pattern: map the available data onto
the agent's skill with the LLM, run the remote task to completion, then
extract the needed values from the result with the LLM.
"""

import logging
from pathlib import Path
from typing import Any

from vidorch.agents.client import A2AAgentClient
from vidorch.agents.extractors import ResultExtractor
from vidorch.agents.mapping import AgentParamMapper
from vidorch.config import Settings
from vidorch.errors import CollaboratorError
from vidorch.orchestrator.collaborators import AgentRole, Collaborators
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
from vidorch.services.file_manager import FileManager
from vidorch.services.llm import LLMAdapter
from vidorch.services.uploader import HttpVideoUploader, LocalVideoStore, VideoUploader
from vidorch.services.video_compiler import VideoCompiler

logger = logging.getLogger(__name__)


class A2ACollaborators(Collaborators):
    def __init__(
        self,
        agents: dict[AgentRole, A2AAgentClient],
        mapper: AgentParamMapper,
        extractor: ResultExtractor,
        compiler: VideoCompiler,
        uploader: VideoUploader,
    ):
        self._agents = agents
        self._mapper = mapper
        self._extractor = extractor
        self._compiler = compiler
        self._uploader = uploader
        self._cards: dict[AgentRole, AgentCard] = {}

    @classmethod
    def from_settings(cls, settings: Settings, adapter: LLMAdapter) -> "A2ACollaborators":
        agent_cfg = settings.agents
        urls = {
            AgentRole.SONG: agent_cfg.song_url,
            AgentRole.SCRIPT: agent_cfg.script_url,
            AgentRole.MEDIA: agent_cfg.media_url,
        }
        agents = {
            role: A2AAgentClient(
                url,
                poll_interval=agent_cfg.poll_interval,
                poll_max=agent_cfg.poll_max,
                request_timeout=agent_cfg.request_timeout,
                send_attempts=agent_cfg.send_attempts,
                send_retry_delay=agent_cfg.send_retry_delay,
            )
            for role, url in urls.items()
        }
        llm_cfg = settings.llm
        file_manager = FileManager(settings.storage.tmp_dir)
        if settings.storage.upload_url:
            uploader: VideoUploader = HttpVideoUploader(
                settings.storage.upload_url, settings.storage.upload_api_key
            )
        else:
            uploader = LocalVideoStore(settings.server.public_url)
        return cls(
            agents=agents,
            mapper=AgentParamMapper(adapter, llm_cfg.temperature, llm_cfg.max_retries),
            extractor=ResultExtractor(adapter, llm_cfg.temperature, llm_cfg.max_retries),
            compiler=VideoCompiler(file_manager),
            uploader=uploader,
        )

    async def fetch_agent_card(self, role: AgentRole) -> AgentCard:
        # cached for the process lifetime
        if role not in self._cards:
            self._cards[role] = await self._agents[role].fetch_agent_card()
        return self._cards[role]

    async def _call(self, role: AgentRole, card: AgentCard, available: dict[str, Any]) -> dict:
        params = await self._mapper.map_params(card, available)
        metadata = params.extra_params()
        if params.skill_id:
            metadata["skillId"] = params.skill_id
        return await self._agents[role].run_task(params.message_text, metadata=metadata)

    async def generate_song(self, card: AgentCard, request: dict[str, Any]) -> SongResult:
        result = await self._call(AgentRole.SONG, card, dict(request))
        info = await self._extractor.song_info(card, result)
        if not info.song_url:
            raise CollaboratorError("Song agent result contains no audio URL")
        logger.info(f"Generated song {info.title!r}")
        return SongResult(title=info.title, song_url=info.song_url, lyrics=info.lyrics, raw=result)

    async def generate_script(
        self, card: AgentCard, song: SongResult, request: dict[str, Any]
    ) -> ScriptResult:
        available = {
            "idea": request.get("prompt") or f"A music video for the song {song.title!r}",
            "title": song.title,
            "lyrics": song.lyrics,
            "song_duration": song.duration,
            **request,
        }
        result = await self._call(AgentRole.SCRIPT, card, available)
        script = await self._extractor.script_text(card, result)
        return ScriptResult(script=script, raw=result)

    async def extract_characters(self, card: AgentCard, script: ScriptResult) -> list[Character]:
        return await self._extractor.characters(card, script.raw or script.script)

    async def extract_settings(self, card: AgentCard, script: ScriptResult) -> list[Setting]:
        return await self._extractor.settings(card, script.raw or script.script)

    async def extract_scenes(self, card: AgentCard, script: ScriptResult) -> list[Scene]:
        return await self._extractor.scenes(card, script.raw or script.script)

    async def _generate_image(
        self, card: AgentCard, subject_type: str, name: str, prompt: str, details: dict, request: dict
    ) -> GeneratedImage:
        available = {
            "type": subject_type,
            "name": name,
            "prompt": prompt,
            "details": details,
            "intent": "generate_image",
            **request,
        }
        logger.info(f"Generating {subject_type} image for {name!r}")
        result = await self._call(AgentRole.MEDIA, card, available)
        url = await self._extractor.image_url(card, result)
        if not url:
            raise CollaboratorError(f"No image URL in result for {subject_type} {name!r}")
        return GeneratedImage(subject_type=subject_type, name=name, url=url)

    async def generate_character_image(
        self, card: AgentCard, character: Character, request: dict[str, Any]
    ) -> GeneratedImage:
        prompt = character.visual_prompt or (
            f"Full body portrait of {character.name}, {character.description}, "
            "high quality, detailed, cinematic lighting"
        )
        return await self._generate_image(
            card, "character", character.name, prompt, character.model_dump(), request
        )

    async def generate_setting_image(
        self, card: AgentCard, setting: Setting, request: dict[str, Any]
    ) -> GeneratedImage:
        prompt = setting.image_prompt or (
            f"Wide shot of {setting.name}, {setting.description}, cinematic, high quality, detailed"
        )
        return await self._generate_image(
            card, "setting", setting.name, prompt, setting.model_dump(), request
        )

    async def generate_video_clip(
        self,
        card: AgentCard,
        scene: Scene,
        images: list[GeneratedImage],
        request: dict[str, Any],
    ) -> GeneratedClip:
        available = {
            "prompt": scene.prompt,
            "scene_index": scene.index,
            "duration": scene.duration,
            "imageUrls": [image.url for image in images],
            "taskType": "image2video" if images else "text2video",
            "intent": "generate_video",
            **request,
        }
        logger.info(f"Generating clip for scene {scene.index} with {len(images)} reference images")
        result = await self._call(AgentRole.MEDIA, card, available)
        url = await self._extractor.video_url(card, result)
        if not url:
            raise CollaboratorError(f"No video URL in result for scene {scene.index}")
        return GeneratedClip(scene_index=scene.index, url=url)

    async def compile_video(
        self,
        task_id: str,
        clips: list[GeneratedClip],
        song: SongResult,
        request: dict[str, Any],
    ) -> Path:
        return await self._compiler.compile(task_id, clips, song)

    async def upload_video(self, task_id: str, path: Path) -> str:
        return await self._uploader.upload(task_id, path)

    async def close(self) -> None:
        for client in self._agents.values():
            await client.close()
