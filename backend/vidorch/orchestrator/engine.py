"""Reentrant step engine for the music video workflow.

Every entry point reloads the task from the store and continues from
metadata.currentStep, so a process-local failure, a queue retry or a
feedback message arriving hours later all resume at the same place.
Step outputs live in the task's artifacts; nothing is kept in memory
between invocations.

Per step the engine:
- reports WORKING with the step it is about to run
- calls the collaborators, fanning out where the step has several subjects
- reports INPUT_REQUIRED with the full artifact list and asks the user to
  review the result

A reply is handled by handle_user_feedback(), which interprets it, persists
the decision and dispatches the next run through run_step().
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from vidorch.errors import (
    NoUserInputError,
    NonRetryableError,
    StepExecutionError,
    TaskNotFoundError,
    TaskStateError,
    TaskTerminalError,
    UnknownStepError,
)
from vidorch.orchestrator.collaborators import STEP_ROLES, AgentRole, Collaborators
from vidorch.orchestrator.feedback import FeedbackContext, FeedbackInterpreter
from vidorch.orchestrator.io import InteractiveIO, OrchestrationIO, OrchestrationProgress
from vidorch.orchestrator.state import (
    STEP_DESCRIPTIONS,
    Effect,
    OrchestrationStep,
    is_terminal,
    parse_action,
    transition,
)
from vidorch.schemas.a2a import (
    Artifact,
    DataPart,
    FilePart,
    Task,
    TaskState,
    TextPart,
    text_message,
)
from vidorch.schemas.generation import (
    ClipSet,
    FinalVideo,
    GeneratedImage,
    ImageSet,
    ScriptBundle,
    SongResult,
)
from vidorch.tasks.store import TaskStore

logger = logging.getLogger(__name__)

# Question shown to the user after each step
STEP_QUESTIONS = {
    OrchestrationStep.GENERATE_SONG: (
        "Do you like the song? Reply to continue with the script, ask to try again, "
        "or describe what to change."
    ),
    OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES: (
        "Is the script good? Reply to continue with the images, or describe what to change."
    ),
    OrchestrationStep.GENERATE_IMAGES: (
        "Are the character and setting images right? Reply to continue with the video clips, "
        "or describe what to change."
    ),
    OrchestrationStep.GENERATE_VIDEO_CLIPS: (
        "Are the video clips good? Reply to compile the final video, or describe what to change."
    ),
    OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO: (
        "Is the final video ready to deliver? Reply to finish, or describe what to change."
    ),
}

StepResult = tuple[list[Artifact], str]


def resolve_step(raw: Any) -> OrchestrationStep:
    """Map a persisted currentStep value to an OrchestrationStep.

    Raises:
        UnknownStepError: If the value names no step.
    """
    try:
        return OrchestrationStep(raw)
    except ValueError:
        raise UnknownStepError(raw) from None


def replace_step_artifacts(
    existing: list[Artifact], step: OrchestrationStep, new: list[Artifact]
) -> list[Artifact]:
    """Drop artifacts a previous run of `step` produced and append `new`."""
    kept = [artifact for artifact in existing if artifact.step != step.value]
    return kept + list(new)


def step_artifact(
    step: OrchestrationStep,
    name: str,
    payload: BaseModel,
    description: Optional[str] = None,
    files: Optional[list[FilePart]] = None,
    text: Optional[str] = None,
) -> Artifact:
    """Build an artifact tagged with the step that produced it."""
    parts: list = list(files or [])
    if text:
        parts.append(TextPart(text=text))
    parts.append(DataPart(data=payload.model_dump(mode="json")))
    return Artifact(
        name=name,
        description=description,
        parts=parts,
        metadata={"step": step.value},
    )


async def _bounded(semaphore: asyncio.Semaphore, coro: Awaitable) -> Any:
    async with semaphore:
        return await coro


class StepEngine:
    """Runs workflow steps and applies user feedback."""

    def __init__(
        self,
        store: TaskStore,
        collaborators: Collaborators,
        interpreter: FeedbackInterpreter,
        image_concurrency: int = 4,
        clip_concurrency: int = 3,
        unknown_action_policy: str = "accept",
    ):
        self._store = store
        self._collaborators = collaborators
        self._interpreter = interpreter
        self.image_concurrency = image_concurrency
        self.clip_concurrency = clip_concurrency
        self.unknown_action_policy = unknown_action_policy

        self._handlers: dict[OrchestrationStep, Callable[[Task, dict], Awaitable[StepResult]]] = {
            OrchestrationStep.GENERATE_SONG: self._generate_song,
            OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES: self._generate_script,
            OrchestrationStep.GENERATE_IMAGES: self._generate_images,
            OrchestrationStep.GENERATE_VIDEO_CLIPS: self._generate_clips,
            OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO: self._compile_and_upload,
        }

    def _load(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def run_step(
        self,
        task_id: str,
        io: OrchestrationIO,
        override_input: Optional[dict[str, Any]] = None,
    ) -> None:
        """Run the task's current step and pause for review.

        Args:
            task_id: Task to advance
            io: Port receiving progress reports
            override_input: Input replacing the step's default request
        """
        task = self._load(task_id)
        if task.is_terminal:
            logger.info(f"Task {task_id} is {task.status.state.value}, nothing to run")
            return

        step = resolve_step(task.metadata.current_step)
        if step == OrchestrationStep.COMPLETED:
            await self._complete(task, io)
            return
        if step == OrchestrationStep.FAILED:
            return

        request = override_input if override_input is not None else self._default_request(task, step)
        await io.on_progress(OrchestrationProgress(
            state=TaskState.WORKING,
            text=f"{STEP_DESCRIPTIONS[step]}...",
            metadata={"current_step": step.value, "step_request": request},
        ))

        step_start = time.monotonic()
        logger.info(f"Task {task_id}: starting {step.value}")
        try:
            artifacts, summary = await self._handlers[step](task, request)
        except NonRetryableError:
            raise
        except Exception as e:
            logger.error(f"Task {task_id}: {step.value} failed: {type(e).__name__}: {e}")
            raise StepExecutionError(step.value, e) from e
        logger.info(f"Task {task_id}: {step.value} completed in {time.monotonic() - step_start:.2f}s")

        merged = replace_step_artifacts(task.artifacts, step, artifacts)
        question = STEP_QUESTIONS[step]
        await io.on_progress(OrchestrationProgress(
            state=TaskState.INPUT_REQUIRED,
            text=f"{summary}\n\n{question}",
            artifacts=merged,
            metadata={"current_step": step.value, "step_input": None},
        ))

        if isinstance(io, InteractiveIO):
            await self._continue_interactively(task_id, io, question, merged)

    async def handle_user_feedback(self, task_id: str, io: OrchestrationIO) -> None:
        """Interpret the latest user reply and continue the workflow.

        Raises:
            TaskTerminalError: The task already finished.
            TaskStateError: The task is not waiting for input.
            NoUserInputError: No user message follows the pause.
        """
        task = self._load(task_id)
        if task.is_terminal:
            raise TaskTerminalError(task_id, task.status.state.value)
        if task.status.state != TaskState.INPUT_REQUIRED:
            raise TaskStateError(
                f"Task {task_id} is {task.status.state.value}, not waiting for input"
            )

        step = resolve_step(task.metadata.current_step)
        if is_terminal(step):
            raise TaskStateError(f"Task {task_id} has no step awaiting feedback ({step.value})")

        # only a reply to the current pause counts
        user_message = task.pending_reply()
        if user_message is None:
            raise NoUserInputError(f"Task {task_id} has no reply to the {step.value} review")
        card = await self._collaborators.fetch_agent_card(STEP_ROLES[step])
        prompt_message = task.last_agent_message()

        decision = await self._interpreter.interpret(FeedbackContext(
            user_comment=user_message.text,
            prompt_message=prompt_message.text if prompt_message else "",
            history=task.history,
            previous_output=task.artifacts,
            previous_input=task.metadata.step_request,
            agent_card=card,
            step=step.value,
        ))

        action = parse_action(decision.action)
        result = transition(step, action, self.unknown_action_policy)
        if result.fallback:
            logger.warning(
                f"Task {task_id}: unrecognised feedback action {decision.action!r} "
                f"at {step.value}, treating as accept"
            )

        if Effect.FAIL_TASK in result.effects:
            logger.warning(f"Task {task_id}: unrecognised feedback action {decision.action!r}, failing task")
            await io.on_progress(OrchestrationProgress(
                state=TaskState.FAILED,
                text=f"Could not interpret feedback action {decision.action!r}",
                metadata={"current_step": OrchestrationStep.FAILED.value, "step_input": None},
            ))
            return

        override = None
        if result.use_new_input:
            override = decision.new_input or task.metadata.step_request

        # Persist the decision first so a retried run resumes at the chosen step
        await io.on_progress(OrchestrationProgress(
            state=TaskState.WORKING,
            text=f"Feedback received ({action.value}), continuing with {result.step.value}",
            metadata={"current_step": result.step.value, "step_input": override},
        ))
        logger.info(f"Task {task_id}: {step.value} --{action.value}--> {result.step.value}")

        await self.run_step(task_id, io, override_input=override)

    async def _complete(self, task: Task, io: OrchestrationIO) -> None:
        if task.is_terminal:
            return
        final = next(
            (a for a in reversed(task.artifacts)
             if a.step == OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO.value),
            None,
        )
        video_url = final.data().get("video_url") if final else None
        text = f"Music video complete: {video_url}" if video_url else "Music video complete"
        await io.on_progress(OrchestrationProgress(
            state=TaskState.COMPLETED,
            text=text,
            metadata={"current_step": OrchestrationStep.COMPLETED.value, "step_input": None},
        ))
        logger.info(f"Task {task.id} completed")

    async def _continue_interactively(
        self, task_id: str, io: InteractiveIO, question: str, artifacts: list[Artifact]
    ) -> None:
        reply = await io.on_input_required(question, artifacts)
        if reply is None:
            logger.info(f"Task {task_id}: direct channel closed, awaiting feedback through the queue")
            return

        def append_reply(task: Task) -> None:
            task.history.append(
                text_message("user", reply, task_id=task.id, context_id=task.context_id)
            )

        await self._store.modify_task(task_id, append_reply)
        await self.handle_user_feedback(task_id, io)

    # ------------------------------------------------------------------
    # Step inputs
    # ------------------------------------------------------------------

    def _default_request(self, task: Task, step: OrchestrationStep) -> dict[str, Any]:
        if step == OrchestrationStep.GENERATE_SONG:
            message = task.last_user_message()
            return {"prompt": message.text if message else ""}
        return {}

    def _step_payload(self, task: Task, step: OrchestrationStep, schema: type[BaseModel]) -> Any:
        """Read the accepted output of an earlier step from the task's artifacts."""
        for artifact in reversed(task.artifacts):
            if artifact.step == step.value:
                return schema.model_validate(artifact.data())
        raise TaskStateError(f"Task {task.id} has no {step.value} output")

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------

    async def _generate_song(self, task: Task, request: dict) -> StepResult:
        card = await self._collaborators.fetch_agent_card(AgentRole.SONG)
        song = await self._collaborators.generate_song(card, request)
        files = [FilePart(uri=song.song_url, mime_type="audio/mpeg", name=song.title or None)] if song.song_url else []
        artifact = step_artifact(
            OrchestrationStep.GENERATE_SONG, "song", song,
            description=song.title or None, files=files, text=song.lyrics or None,
        )
        title = f'"{song.title}"' if song.title else "Untitled"
        return [artifact], f"Song generated: {title}"

    async def _generate_script(self, task: Task, request: dict) -> StepResult:
        song = self._step_payload(task, OrchestrationStep.GENERATE_SONG, SongResult)
        card = await self._collaborators.fetch_agent_card(AgentRole.SCRIPT)
        script = await self._collaborators.generate_script(card, song, request)

        characters, settings, scenes = await asyncio.gather(
            self._collaborators.extract_characters(card, script),
            self._collaborators.extract_settings(card, script),
            self._collaborators.extract_scenes(card, script),
        )
        bundle = ScriptBundle(script=script, characters=characters, settings=settings, scenes=scenes)
        artifact = step_artifact(
            OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES, "script", bundle,
            description="Script with extracted characters, settings and scenes",
            text=script.script or None,
        )
        summary = (
            f"Script generated with {len(characters)} characters, "
            f"{len(settings)} settings and {len(scenes)} scenes"
        )
        return [artifact], summary

    async def _generate_images(self, task: Task, request: dict) -> StepResult:
        bundle = self._step_payload(task, OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES, ScriptBundle)
        card = await self._collaborators.fetch_agent_card(AgentRole.MEDIA)

        semaphore = asyncio.Semaphore(self.image_concurrency)
        jobs = [
            _bounded(semaphore, self._collaborators.generate_character_image(card, character, request))
            for character in bundle.characters
        ] + [
            _bounded(semaphore, self._collaborators.generate_setting_image(card, setting, request))
            for setting in bundle.settings
        ]
        images: list[GeneratedImage] = list(await asyncio.gather(*jobs))

        image_set = ImageSet(images=images)
        files = [FilePart(uri=img.url, mime_type="image/png", name=img.name) for img in images if img.url]
        artifact = step_artifact(
            OrchestrationStep.GENERATE_IMAGES, "images", image_set,
            description="Character and setting images", files=files,
        )
        return [artifact], (
            f"Generated {len(bundle.characters)} character images "
            f"and {len(bundle.settings)} setting images"
        )

    async def _generate_clips(self, task: Task, request: dict) -> StepResult:
        bundle = self._step_payload(task, OrchestrationStep.GENERATE_SCRIPT_AND_EXTRACT_ENTITIES, ScriptBundle)
        image_set = self._step_payload(task, OrchestrationStep.GENERATE_IMAGES, ImageSet)
        card = await self._collaborators.fetch_agent_card(AgentRole.MEDIA)

        semaphore = asyncio.Semaphore(self.clip_concurrency)
        clips = await asyncio.gather(*(
            _bounded(
                semaphore,
                self._collaborators.generate_video_clip(card, scene, image_set.for_scene(scene), request),
            )
            for scene in bundle.scenes
        ))
        clip_set = ClipSet(clips=sorted(clips, key=lambda clip: clip.scene_index))
        files = [FilePart(uri=clip.url, mime_type="video/mp4") for clip in clip_set.clips if clip.url]
        artifact = step_artifact(
            OrchestrationStep.GENERATE_VIDEO_CLIPS, "video_clips", clip_set,
            description="Video clip per scene", files=files,
        )
        return [artifact], f"Generated {len(clip_set.clips)} video clips"

    async def _compile_and_upload(self, task: Task, request: dict) -> StepResult:
        song = self._step_payload(task, OrchestrationStep.GENERATE_SONG, SongResult)
        clip_set = self._step_payload(task, OrchestrationStep.GENERATE_VIDEO_CLIPS, ClipSet)
        if not clip_set.clips:
            raise TaskStateError(f"Task {task.id} has no video clips to compile")

        path = await self._collaborators.compile_video(task.id, clip_set.clips, song, request)
        video_url = await self._collaborators.upload_video(task.id, path)
        artifact = step_artifact(
            OrchestrationStep.COMPILE_AND_UPLOAD_VIDEO, "final_video", FinalVideo(video_url=video_url),
            description="Compiled music video",
            files=[FilePart(uri=video_url, mime_type="video/mp4", name="final_video.mp4")],
        )
        return [artifact], f"Final video ready: {video_url}"
