"""Pydantic schemas for collaborator results and LLM extraction output.

Step outputs are persisted as DataParts inside artifacts and read back by
downstream steps, so every model here round-trips through JSON.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list/non-str values to a comma-separated string.

    Some LLM providers (e.g. Ollama) return arrays for fields declared as
    string in the JSON schema.
    """
    if isinstance(v, list):
        return ", ".join(str(item) for item in v)
    if v is None:
        return ""
    return v


def _coerce_to_list(v: Any) -> list:
    if v is None:
        return []
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]
CoercedList = Annotated[list[str], BeforeValidator(_coerce_to_list)]


# ---------------------------------------------------------------------------
# Step results
# ---------------------------------------------------------------------------

class SongResult(BaseModel):
    """Song produced by the song generation agent."""

    title: CoercedStr = Field(default="", description="Song title")
    song_url: CoercedStr = Field(default="", description="Direct URL of the generated audio file")
    lyrics: CoercedStr = Field(default="", description="Song lyrics, if returned")
    duration: Optional[float] = Field(default=None, description="Duration in seconds")
    raw: dict[str, Any] = Field(default_factory=dict)


class ScriptResult(BaseModel):
    """Script produced by the script generation agent."""

    script: CoercedStr = ""
    raw: dict[str, Any] = Field(default_factory=dict)


class Character(BaseModel):
    name: CoercedStr = Field(description="Character name exactly as used in the script")
    description: CoercedStr = Field(default="", description="Physical and personality details")
    visual_prompt: CoercedStr = Field(default="", description="Prompt for character image generation")


class Setting(BaseModel):
    name: CoercedStr = Field(description="Location identifier exactly as used in the script")
    description: CoercedStr = Field(default="", description="Detailed description of the location")
    image_prompt: CoercedStr = Field(default="", description="Prompt for background image generation")


class Scene(BaseModel):
    index: int = Field(description="Sequential scene number starting from 0")
    prompt: CoercedStr = Field(description="Visual prompt suitable for AI video generation")
    setting_name: CoercedStr = Field(default="", description="Name of the setting the scene takes place in")
    characters: CoercedList = Field(default_factory=list, description="Names of characters present")
    duration: Optional[float] = Field(default=None, description="Duration in seconds, if known")


class ScriptBundle(BaseModel):
    """Output of the script step: the script plus extracted entities."""

    script: ScriptResult
    characters: list[Character] = Field(default_factory=list)
    settings: list[Setting] = Field(default_factory=list)
    scenes: list[Scene] = Field(default_factory=list)


class GeneratedImage(BaseModel):
    subject_type: str = Field(description='"character" or "setting"')
    name: str
    url: str


class ImageSet(BaseModel):
    images: list[GeneratedImage] = Field(default_factory=list)

    def for_scene(self, scene: Scene) -> list[GeneratedImage]:
        """Images of the scene's setting followed by its characters."""
        wanted = {name.lower() for name in scene.characters}
        setting = [
            img for img in self.images
            if img.subject_type == "setting" and img.name.lower() == scene.setting_name.lower()
        ]
        characters = [
            img for img in self.images
            if img.subject_type == "character" and img.name.lower() in wanted
        ]
        return setting + characters


class GeneratedClip(BaseModel):
    scene_index: int
    url: str


class ClipSet(BaseModel):
    clips: list[GeneratedClip] = Field(default_factory=list)


class FinalVideo(BaseModel):
    video_url: str


# ---------------------------------------------------------------------------
# LLM extraction output
# ---------------------------------------------------------------------------

class CharacterList(BaseModel):
    characters: list[Character] = Field(
        description="Every character in the script, each listed once"
    )


class SettingList(BaseModel):
    settings: list[Setting] = Field(
        description="Unique locations; scenes sharing a place share one setting"
    )


class SceneList(BaseModel):
    scenes: list[Scene] = Field(description="All scenes in script order")


class SongInfo(BaseModel):
    song_url: CoercedStr = Field(default="", description="Direct URL of the generated audio")
    title: CoercedStr = Field(default="", description="Song title")
    lyrics: CoercedStr = Field(default="", description="Song lyrics, empty if absent")


class ScriptText(BaseModel):
    script: CoercedStr = Field(description="Full script text including scene breakdown")


class MediaUrl(BaseModel):
    url: CoercedStr = Field(default="", description="Direct URL of the generated media, empty if none")


class AgentCallParams(BaseModel):
    """Skill parameters chosen by the LLM for a remote agent call.

    `message_text` is the adapted main input sent as the A2A message; all
    other keys are forwarded as task metadata.
    """

    model_config = ConfigDict(extra="allow")

    skill_id: Optional[str] = Field(default=None, description="Selected skill id")
    message_text: CoercedStr = Field(description="Main input adapted for the selected skill")

    def extra_params(self) -> dict[str, Any]:
        return dict(self.model_extra or {})
