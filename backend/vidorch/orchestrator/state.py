"""State machine constants and transition logic for the step engine.

Defines the fixed step order of the music video workflow and a pure
transition function mapping (step, feedback action) to the next step and
the effects the engine must carry out. All resumable state lives in the
task's metadata.currentStep, so reentry only needs these tables.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OrchestrationStep(str, Enum):
    """Workflow steps in execution order, plus the terminal states."""

    GENERATE_SONG = "GENERATE_SONG"
    GENERATE_SCRIPT_AND_EXTRACT_ENTITIES = "GENERATE_SCRIPT_AND_EXTRACT_ENTITIES"
    GENERATE_IMAGES = "GENERATE_IMAGES"
    GENERATE_VIDEO_CLIPS = "GENERATE_VIDEO_CLIPS"
    COMPILE_AND_UPLOAD_VIDEO = "COMPILE_AND_UPLOAD_VIDEO"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FeedbackAction(str, Enum):
    """Decisions the feedback interpreter can return."""

    ACCEPT = "accept"
    RETRY = "retry"
    MODIFY = "modify"
    UNKNOWN = "unknown"


class Effect(str, Enum):
    """Side effects requested by a transition."""

    RUN_STEP = "run_step"
    COMPLETE_TASK = "complete_task"
    FAIL_TASK = "fail_task"


# Step descriptions, used in progress messages and logs
STEP_DESCRIPTIONS = {
    OrchestrationStep.GENERATE_SONG: "Generating song",
    OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES: "Generating script",
    OrchestrationStep.GENERATE_IMAGES: "Generating character and setting images",
    OrchestrationStep.GENERATE_VIDEO_CLIPS: "Generating video clips",
    OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO: "Compiling and uploading final video",
    OrchestrationStep.COMPLETED: "Workflow finished successfully",
    OrchestrationStep.FAILED: "Workflow encountered unrecoverable error",
}

# Accept transitions for active steps
STEP_TRANSITIONS = {
    OrchestrationStep.GENERATE_SONG: OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES,
    OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES: OrchestrationStep.GENERATE_IMAGES,
    OrchestrationStep.GENERATE_IMAGES: OrchestrationStep.GENERATE_VIDEO_CLIPS,
    OrchestrationStep.GENERATE_VIDEO_CLIPS: OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO,
    OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO: OrchestrationStep.COMPLETED,
}

TERMINAL_STEPS = frozenset({OrchestrationStep.COMPLETED, OrchestrationStep.FAILED})


@dataclass(frozen=True)
class Transition:
    """Result of applying a feedback action to a step."""

    step: OrchestrationStep
    effects: tuple[Effect, ...]
    use_new_input: bool = False
    fallback: bool = False


def is_terminal(step: OrchestrationStep) -> bool:
    """Return True if no further work happens at this step."""
    return step in TERMINAL_STEPS


def next_step(step: OrchestrationStep) -> OrchestrationStep:
    """Return the step that follows `step` in the fixed order.

    Raises:
        ValueError: If `step` is terminal.
    """
    try:
        return STEP_TRANSITIONS[step]
    except KeyError:
        raise ValueError(f"Step {step.value} has no successor") from None


def parse_action(raw: Optional[str]) -> FeedbackAction:
    """Normalise an interpreter action string; unrecognised values map to UNKNOWN."""
    if not raw:
        return FeedbackAction.UNKNOWN
    try:
        return FeedbackAction(raw.strip().lower())
    except ValueError:
        return FeedbackAction.UNKNOWN


def transition(
    step: OrchestrationStep,
    action: FeedbackAction,
    unknown_action_policy: str = "accept",
) -> Transition:
    """Apply a feedback action to the step that produced the reviewed output.

    accept advances to the next step (completing the task after the final
    step), retry and modify stay on the same step, the latter carrying the
    interpreter's new input. An unknown action follows the configured
    policy: "accept" treats it as accept, "fail" fails the task.

    Args:
        step: Step awaiting feedback
        action: Parsed interpreter action
        unknown_action_policy: "accept" or "fail"

    Returns:
        Transition describing the next step and effects

    Examples:
        >>> transition(OrchestrationStep.GENERATE_SONG, FeedbackAction.ACCEPT).step
        <OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES: 'GENERATE_SCRIPT_AND_EXTRACT_ENTITIES'>
        >>> transition(OrchestrationStep.GENERATE_IMAGES, FeedbackAction.RETRY).step
        <OrchestrationStep.GENERATE_IMAGES: 'GENERATE_IMAGES'>
    """
    if is_terminal(step):
        raise ValueError(f"Cannot apply feedback to terminal step {step.value}")

    fallback = False
    if action == FeedbackAction.UNKNOWN:
        if unknown_action_policy == "fail":
            return Transition(step=OrchestrationStep.FAILED, effects=(Effect.FAIL_TASK,))
        action = FeedbackAction.ACCEPT
        fallback = True

    if action == FeedbackAction.ACCEPT:
        target = next_step(step)
        if target == OrchestrationStep.COMPLETED:
            return Transition(step=target, effects=(Effect.COMPLETE_TASK,), fallback=fallback)
        return Transition(step=target, effects=(Effect.RUN_STEP,), fallback=fallback)

    # retry and modify both re-run the same step; newInput applies when given
    return Transition(step=step, effects=(Effect.RUN_STEP,), use_new_input=True)
