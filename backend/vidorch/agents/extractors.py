"""LLM-powered extraction of structured data from remote agent results.

Remote agents describe their output only loosely in their agent card, so
each extractor hands the card, the raw result and an extraction goal to
the LLM and validates the answer against a Pydantic schema.
"""

import json
import logging
from typing import Any, Type

from vidorch.schemas.a2a import AgentCard
from vidorch.schemas.generation import (
    Character,
    CharacterList,
    MediaUrl,
    Scene,
    SceneList,
    ScriptText,
    Setting,
    SettingList,
    SongInfo,
)
from vidorch.services.llm import LLMAdapter
from vidorch.services.llm.base import SchemaT

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a specialized parser for multi-agent workflow outputs. "
    "Return only valid JSON without any wrapper text."
)

CHARACTERS_GOAL = """Extract all characters, each listed once:
- name exactly as used in the script and scene descriptions
- description with physical and personality details
- visual_prompt suitable for generating the character's image
If the result provides a character list, treat it as authoritative."""

SETTINGS_GOAL = """Extract all unique settings (locations):
- name exactly as the script identifies the location
- description of the location
- image_prompt suitable for generating a background image
Scenes that happen in the same place share one setting; do not emit one per scene."""

SCENES_GOAL = """Extract all scenes in order:
- index starting from 0
- prompt: a visual prompt suitable for AI video generation, including camera movement
- setting_name matching exactly one extracted setting name
- characters: names of the characters present, matching the character list exactly;
  every scene has at least one character
- duration in seconds if available"""

SONG_GOAL = "Extract the direct URL of the generated song audio, its title and its lyrics."
SCRIPT_GOAL = "Extract the full script text, including any scene breakdown."
IMAGE_URL_GOAL = "Extract the direct URL of the generated image; the first one if there are several."
VIDEO_URL_GOAL = "Extract the direct URL of the generated video; the first one if there are several."


def build_extraction_prompt(card: AgentCard, result: Any, goal: str) -> str:
    return f"""The orchestrator is building a music video by coordinating several agents and
needs specific information from one agent's output for the next step.

Agent card (describes the output structure):
{json.dumps(card.to_wire(), indent=2)}

Agent result:
{json.dumps(result, indent=2, default=str)}

Extraction goal:
{goal}

Extract only what the goal asks for. Leave missing fields empty.
"""


class ResultExtractor:
    """Extracts typed values from remote agent results."""

    def __init__(self, adapter: LLMAdapter, temperature: float = 0.2, max_retries: int = 3):
        self._adapter = adapter
        self._temperature = temperature
        self._max_retries = max_retries

    async def extract(self, card: AgentCard, result: Any, goal: str, schema: Type[SchemaT]) -> SchemaT:
        return await self._adapter.generate_text(
            build_extraction_prompt(card, result, goal),
            schema,
            temperature=self._temperature,
            system_prompt=SYSTEM_PROMPT,
            max_retries=self._max_retries,
        )

    async def characters(self, card: AgentCard, result: Any) -> list[Character]:
        extracted = await self.extract(card, result, CHARACTERS_GOAL, CharacterList)
        logger.info(f"Extracted {len(extracted.characters)} characters")
        return extracted.characters

    async def settings(self, card: AgentCard, result: Any) -> list[Setting]:
        extracted = await self.extract(card, result, SETTINGS_GOAL, SettingList)
        logger.info(f"Extracted {len(extracted.settings)} settings")
        return extracted.settings

    async def scenes(self, card: AgentCard, result: Any) -> list[Scene]:
        extracted = await self.extract(card, result, SCENES_GOAL, SceneList)
        logger.info(f"Extracted {len(extracted.scenes)} scenes")
        return sorted(extracted.scenes, key=lambda scene: scene.index)

    async def song_info(self, card: AgentCard, result: Any) -> SongInfo:
        return await self.extract(card, result, SONG_GOAL, SongInfo)

    async def script_text(self, card: AgentCard, result: Any) -> str:
        return (await self.extract(card, result, SCRIPT_GOAL, ScriptText)).script

    async def image_url(self, card: AgentCard, result: Any) -> str:
        return (await self.extract(card, result, IMAGE_URL_GOAL, MediaUrl)).url

    async def video_url(self, card: AgentCard, result: Any) -> str:
        return (await self.extract(card, result, VIDEO_URL_GOAL, MediaUrl)).url
