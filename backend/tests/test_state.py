"""Tests for the workflow state machine."""

import pytest

from vidorch.orchestrator.state import (
    STEP_DESCRIPTIONS,
    Effect,
    FeedbackAction,
    OrchestrationStep,
    is_terminal,
    next_step,
    parse_action,
    transition,
)

ORDER = [
    OrchestrationStep.GENERATE_SONG,
    OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES,
    OrchestrationStep.GENERATE_IMAGES,
    OrchestrationStep.GENERATE_VIDEO_CLIPS,
    OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO,
    OrchestrationStep.COMPLETED,
]


def test_steps_follow_fixed_order():
    for current, expected in zip(ORDER, ORDER[1:]):
        assert next_step(current) == expected


def test_every_working_step_has_a_description():
    for step in ORDER[:-1]:
        assert STEP_DESCRIPTIONS[step]


@pytest.mark.parametrize("step", [OrchestrationStep.COMPLETED, OrchestrationStep.FAILED])
def test_terminal_steps(step):
    assert is_terminal(step)
    with pytest.raises(ValueError):
        next_step(step)
    with pytest.raises(ValueError):
        transition(step, FeedbackAction.ACCEPT)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("accept", FeedbackAction.ACCEPT),
        (" Retry ", FeedbackAction.RETRY),
        ("MODIFY", FeedbackAction.MODIFY),
        ("dance", FeedbackAction.UNKNOWN),
        ("", FeedbackAction.UNKNOWN),
        (None, FeedbackAction.UNKNOWN),
    ],
)
def test_parse_action(raw, expected):
    assert parse_action(raw) == expected


def test_accept_advances_one_step():
    result = transition(OrchestrationStep.GENERATE_IMAGES, FeedbackAction.ACCEPT)
    assert result.step == OrchestrationStep.GENERATE_VIDEO_CLIPS
    assert result.effects == (Effect.RUN_STEP,)
    assert not result.use_new_input
    assert not result.fallback


def test_accept_after_last_step_completes_task():
    result = transition(OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO, FeedbackAction.ACCEPT)
    assert result.step == OrchestrationStep.COMPLETED
    assert Effect.COMPLETE_TASK in result.effects


@pytest.mark.parametrize("action", [FeedbackAction.RETRY, FeedbackAction.MODIFY])
def test_retry_and_modify_stay_on_step(action):
    result = transition(OrchestrationStep.GENERATE_SONG, action)
    assert result.step == OrchestrationStep.GENERATE_SONG
    assert Effect.RUN_STEP in result.effects
    assert result.use_new_input


def test_unknown_action_defaults_to_accept():
    result = transition(OrchestrationStep.GENERATE_SONG, FeedbackAction.UNKNOWN)
    assert result.step == OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES
    assert result.fallback


def test_unknown_action_can_fail_task():
    result = transition(OrchestrationStep.GENERATE_SONG, FeedbackAction.UNKNOWN, "fail")
    assert result.step == OrchestrationStep.FAILED
    assert Effect.FAIL_TASK in result.effects
