"""LLM-driven mapping of orchestrator data onto a remote agent's skill.

Remote agents name their main input differently (prompt, idea, input, ...)
and declare extra parameters in their agent card. The mapper asks the LLM
to pick a skill, adapt the user's request to it and fill the declared
parameters; the adapted text becomes the A2A message and everything else
travels as task metadata.
"""

import json
import logging
from typing import Any

from vidorch.schemas.a2a import AgentCard
from vidorch.schemas.generation import AgentCallParams
from vidorch.services.llm import LLMAdapter

logger = logging.getLogger(__name__)

# Field names commonly used for an agent's main text input
MAIN_INPUT_FIELDS = ("prompt", "idea", "input", "message", "text", "query")

SYSTEM_PROMPT = (
    "You are an expert in API integration and prompt adaptation for a multi-agent "
    "creative workflow. Return only the JSON object requested."
)


def find_main_input(data: dict[str, Any]) -> str:
    """Return the first non-blank main-input field of `data`."""
    for name in MAIN_INPUT_FIELDS:
        value = data.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def build_mapping_prompt(card: AgentCard, available: dict[str, Any]) -> str:
    return f"""Given an agent card and the data available in the orchestrator:
1. Select the skill of the agent best suited to the request.
2. Rewrite the user's request so it is directly actionable for that skill; put it in message_text.
3. Include every parameter the selected skill requires, using the available data.
4. Put the selected skill's id in skill_id.

Agent card:
{json.dumps(card.to_wire(), indent=2)}

Available data:
{json.dumps(available, indent=2, default=str)}
"""


class AgentParamMapper:
    def __init__(self, adapter: LLMAdapter, temperature: float = 0.2, max_retries: int = 3):
        self._adapter = adapter
        self._temperature = temperature
        self._max_retries = max_retries

    async def map_params(self, card: AgentCard, available: dict[str, Any]) -> AgentCallParams:
        """Map available data to a call of one of `card`'s skills.

        When the available data carries an explicit main input it wins over
        the model's rewrite, so user wording reaches the agent unchanged.
        """
        logger.info(f"Mapping parameters for agent {card.name}")
        params = await self._adapter.generate_text(
            build_mapping_prompt(card, available),
            AgentCallParams,
            temperature=self._temperature,
            system_prompt=SYSTEM_PROMPT,
            max_retries=self._max_retries,
        )
        main_input = find_main_input(available)
        if main_input:
            params.message_text = main_input
        logger.debug(f"Mapped params for {card.name}: skill={params.skill_id} extra={list(params.extra_params())}")
        return params
