"""Exception hierarchy for the orchestrator.

Errors deriving from NonRetryableError short-circuit the task queue's retry
policy: the task is marked failed on the first occurrence.
"""


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class NonRetryableError(OrchestratorError):
    """Marker base class: the queue fails the task without retrying."""


# ---------------------------------------------------------------------------
# Task store
# ---------------------------------------------------------------------------

class TaskStoreError(OrchestratorError):
    """Raised when a task store operation cannot be applied."""


class DuplicateTaskError(TaskStoreError):
    """Raised when creating a task whose id already exists."""


class TaskNotFoundError(TaskStoreError):
    """Raised when updating a task that is not in the store."""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TaskTerminalError(TaskStoreError, NonRetryableError):
    """Raised when mutating a task that already reached a terminal state."""

    def __init__(self, task_id: str, state: str):
        super().__init__(f"Task {task_id} is already {state}")
        self.task_id = task_id
        self.state = state


class HistoryRewriteError(TaskStoreError):
    """Raised when an update would drop existing history entries."""


# ---------------------------------------------------------------------------
# Non-retryable processing errors
# ---------------------------------------------------------------------------

class TaskValidationError(NonRetryableError):
    """Raised when a task's initial message is empty or malformed."""


class UnknownStepError(NonRetryableError):
    """Raised when metadata.currentStep names no known step."""

    def __init__(self, step: object):
        super().__init__(f"Unknown orchestration step: {step!r}")
        self.step = step


class NoUserInputError(NonRetryableError):
    """Raised when feedback handling finds no user message in history."""


class TaskStateError(NonRetryableError):
    """Raised when feedback arrives for a task that is not awaiting input."""


# ---------------------------------------------------------------------------
# Step execution and collaborators
# ---------------------------------------------------------------------------

class StepExecutionError(OrchestratorError):
    """Raised when a collaborator call inside a step fails."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"{step} failed: {type(cause).__name__}: {cause}")
        self.step = step
        self.cause = cause


class CollaboratorError(OrchestratorError):
    """Raised when a remote generation agent returns an error or times out."""


class FeedbackInterpretationError(OrchestratorError):
    """Raised when the feedback interpreter cannot produce a decision."""
