"""Feedback interpretation.

Turns a user's free-text reply to an INPUT_REQUIRED prompt into a
FeedbackDecision (accept, retry or modify with new input) using an LLM.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from vidorch.errors import FeedbackInterpretationError
from vidorch.schemas.a2a import AgentCard, Artifact, Message
from vidorch.schemas.feedback import FeedbackDecision
from vidorch.services.llm import LLMAdapter

logger = logging.getLogger(__name__)


@dataclass
class FeedbackContext:
    """Everything the interpreter sees about the paused step."""

    user_comment: str
    prompt_message: str = ""
    history: list[Message] = field(default_factory=list)
    previous_output: list[Artifact] = field(default_factory=list)
    previous_input: Optional[dict[str, Any]] = None
    agent_card: Optional[AgentCard] = None
    step: str = ""


class FeedbackInterpreter(ABC):
    @abstractmethod
    async def interpret(self, context: FeedbackContext) -> FeedbackDecision:
        ...


SYSTEM_PROMPT = (
    "You are the orchestration assistant of a music video workflow. "
    "Decide what the user wants to happen with the output of the current step."
)


def build_feedback_prompt(context: FeedbackContext) -> str:
    """Render the interpretation prompt for a paused step."""
    skill = context.agent_card.skill() if context.agent_card else None
    output_structure = json.dumps(skill.returns, indent=2) if skill and skill.returns else "(not specified)"
    step_output = [a for a in context.previous_output if a.step == context.step] or context.previous_output
    previous_output = json.dumps([a.to_wire() for a in step_output], indent=2)
    recent = "\n".join(
        f"{m.role}: {m.text}" for m in context.history[-6:] if m.text
    )

    return f"""The workflow is at step {context.step or "(unknown)"}.

The step was run with this input:
{json.dumps(context.previous_input or {}, indent=2)}

It produced this output:
{previous_output}

The output structure is:
{output_structure}

Recent conversation:
{recent}

The system asked the user:
"{context.prompt_message}"

The user replied:
"{context.user_comment}"

Return a JSON object with:
- action: "accept" if the user is satisfied and wants to continue,
- action: "retry" if the user wants this step repeated as is,
- action: "modify" if the user wants the step repeated with changed input; put the
  complete replacement input in new_input, keeping keys of the previous input.
"""


class LLMFeedbackInterpreter(FeedbackInterpreter):
    """Feedback interpreter backed by an LLMAdapter."""

    def __init__(self, adapter: LLMAdapter, temperature: float = 0.2, max_retries: int = 3):
        self._adapter = adapter
        self._temperature = temperature
        self._max_retries = max_retries

    async def interpret(self, context: FeedbackContext) -> FeedbackDecision:
        prompt = build_feedback_prompt(context)
        try:
            decision = await self._adapter.generate_text(
                prompt,
                FeedbackDecision,
                temperature=self._temperature,
                system_prompt=SYSTEM_PROMPT,
                max_retries=self._max_retries,
            )
        except Exception as e:
            logger.error(f"Feedback interpretation failed at {context.step}: {e}")
            raise FeedbackInterpretationError(f"Could not interpret feedback: {e}") from e

        logger.info(
            f"Interpreted feedback at {context.step}: action={decision.action!r} "
            f"new_input={'yes' if decision.new_input else 'no'}"
        )
        return decision
