"""Abstract base class for LLM provider adapters.

The orchestrator uses language models for three jobs: mapping a user
request onto a remote agent's skill parameters, extracting structured
entities from generated scripts, and interpreting user feedback. All of
them go through generate_text with a Pydantic schema.
"""

from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` fence if the model added one."""
    stripped = raw.strip()
    if not stripped.startswith("```"):
        return stripped
    first_newline = stripped.find("\n")
    stripped = stripped[first_newline + 1:] if first_newline != -1 else stripped[3:]
    if stripped.endswith("```"):
        stripped = stripped[:-3].rstrip()
    return stripped


class LLMAdapter(ABC):
    """Provider-neutral structured text generation."""

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[SchemaT],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> SchemaT:
        """Generate structured output from a prompt.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            system_prompt: Optional system/instruction prompt.
            max_retries: Maximum number of attempts on failure.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...
