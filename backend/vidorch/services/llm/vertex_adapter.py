"""Vertex AI adapter for the LLM abstraction layer.

Structured output uses response_schema so the model returns JSON matching
the caller's Pydantic class. Authentication uses Application Default
Credentials; GOOGLE_APPLICATION_CREDENTIALS may be set in .env.
"""

import logging
from typing import Optional, Type

from dotenv import load_dotenv
from google import genai
from google.genai import types as genai_types
from tenacity import before_sleep_log, retry, stop_after_attempt, wait_exponential

from vidorch.services.llm.base import LLMAdapter, SchemaT

logger = logging.getLogger(__name__)

load_dotenv()

# Models only served from the global endpoint
GLOBAL_REGION_MODELS = {
    "gemini-3-flash-preview",
    "gemini-3-pro-preview",
}


def location_for_model(model_id: str, default_location: str) -> str:
    """Return the Vertex AI location a model must be called in."""
    if model_id in GLOBAL_REGION_MODELS:
        return "global"
    return default_location


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by Google Vertex AI (google-genai SDK).

    Project and location default to the google_cloud settings section.
    The client is created on first use.
    """

    def __init__(
        self,
        model_id: str,
        project_id: Optional[str] = None,
        location: Optional[str] = None,
    ) -> None:
        if project_id is None or location is None:
            from vidorch.config import settings

            project_id = project_id or settings.google_cloud.project_id
            location = location or settings.google_cloud.location
        self._model_id = model_id
        self._project_id = project_id
        self._location = location_for_model(model_id, location)
        self._client: Optional[genai.Client] = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            logger.debug(f"Creating Vertex AI client for {self._project_id} in {self._location}")
            self._client = genai.Client(
                vertexai=True,
                project=self._project_id,
                location=self._location,
            )
        return self._client

    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=schema,
            system_instruction=system_prompt,
        )

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> SchemaT:
            response = await self.client.aio.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=config,
            )
            return schema.model_validate_json(response.text)

        return await _call()
