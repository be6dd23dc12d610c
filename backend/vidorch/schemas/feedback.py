"""Pydantic schemas for feedback interpretation."""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class FeedbackDecision(BaseModel):
    """Interpreter verdict on a user's reply to an INPUT_REQUIRED prompt.

    action is kept as a free string; the engine maps unrecognised values
    through its unknown-action policy.
    """

    action: str = Field(
        description='"accept" to continue, "retry" to repeat the step, '
        '"modify" to repeat it with new_input'
    )
    new_input: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("new_input", "newInput"),
        description="Replacement input parameters for the step when action is modify",
    )
    reasoning: Optional[str] = Field(default=None, description="One sentence explaining the decision")
