"""Provider registry for LLM adapters.

Routes model IDs to an adapter by prefix: "ollama/" goes to Ollama,
everything else (normally "gemini-*") goes to Vertex AI.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from vidorch.services.llm.base import LLMAdapter

if TYPE_CHECKING:
    from vidorch.config import LLMConfig

logger = logging.getLogger(__name__)


def _is_ollama_model(model_id: str) -> bool:
    return model_id.startswith("ollama/")


def get_adapter(
    model_id: Optional[str] = None,
    llm_config: Optional["LLMConfig"] = None,
) -> LLMAdapter:
    """Return the LLM adapter for a model ID.

    Args:
        model_id: Model identifier (e.g. "gemini-2.5-flash", "ollama/llama3.1").
                  Defaults to llm_config.model.
        llm_config: LLM settings section; defaults to the global settings.

    Returns:
        Configured LLMAdapter instance.
    """
    if llm_config is None:
        from vidorch.config import settings

        llm_config = settings.llm
    model_id = model_id or llm_config.model

    if _is_ollama_model(model_id):
        from vidorch.services.llm.ollama_adapter import OllamaAdapter

        if llm_config.ollama_use_cloud:
            base_url = llm_config.ollama_endpoint or "https://ollama.com"
            api_key = llm_config.ollama_api_key
        else:
            base_url = llm_config.ollama_endpoint or "http://localhost:11434"
            api_key = None

        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model_id,
            base_url,
            bool(api_key),
        )
        return OllamaAdapter(model_id=model_id, base_url=base_url, api_key=api_key)

    from vidorch.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug("Routing %s to VertexAIAdapter", model_id)
    return VertexAIAdapter(model_id=model_id)
