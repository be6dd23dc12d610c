"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class AgentsConfig(BaseModel):
    """Remote generation agents reached over the A2A protocol."""

    song_url: str = "http://localhost:8001"
    script_url: str = "http://localhost:8002"
    media_url: str = "http://localhost:8003"
    poll_interval: float = 2.0
    poll_max: int = 120
    request_timeout: float = 30.0
    send_attempts: int = 3
    send_retry_delay: float = 2.0


class QueueConfig(BaseModel):
    """Task queue admission and retry parameters."""

    max_concurrent: int = Field(default=2, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0.0)


class EngineConfig(BaseModel):
    """Step engine fan-out limits and feedback policy.

    unknown_action_policy decides what an unrecognised interpreter action
    does: "accept" advances the workflow, "fail" fails the task.
    """

    image_concurrency: int = Field(default=4, ge=1)
    clip_concurrency: int = Field(default=3, ge=1)
    unknown_action_policy: Literal["accept", "fail"] = "accept"


class LLMConfig(BaseModel):
    """Language model used for parameter mapping, extraction and feedback."""

    model: str = "ollama/llama3.1"
    ollama_endpoint: str = "http://localhost:11434"
    ollama_api_key: str | None = None
    ollama_use_cloud: bool = False
    temperature: float = 0.2
    max_retries: int = 3


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration for gemini-* models."""

    project_id: str = ""
    location: str = "us-central1"


class StorageConfig(BaseModel):
    """Local scratch space and final video upload target.

    An empty upload_url keeps compiled videos on local disk.
    """

    tmp_dir: Path = Path("tmp")
    upload_url: str = ""
    upload_api_key: str | None = None

    @field_validator("tmp_dir", mode="before")
    @classmethod
    def convert_tmp_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    public_url: str = "http://localhost:8000"
    cors_origins: list[str] = ["http://localhost:5173"]


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: VIDORCH_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="VIDORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    agents: AgentsConfig = AgentsConfig()
    queue: QueueConfig = QueueConfig()
    engine: EngineConfig = EngineConfig()
    llm: LLMConfig = LLMConfig()
    google_cloud: GoogleCloudConfig = GoogleCloudConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
