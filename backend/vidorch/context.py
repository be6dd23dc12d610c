"""Application context.

One AppContext is built at startup and handed to every transport. It owns
the task store, engine, processor and queue plus the transport-side
registries, so tests can build a fresh, fully wired instance with fake
collaborators.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from vidorch.api.sessions import SessionRegistry
from vidorch.api.streaming import PushNotificationService
from vidorch.config import Settings, settings as default_settings
from vidorch.orchestrator.collaborators import Collaborators
from vidorch.orchestrator.engine import StepEngine
from vidorch.orchestrator.feedback import FeedbackInterpreter, LLMFeedbackInterpreter
from vidorch.orchestrator.io import InputWaitRegistry
from vidorch.tasks.processor import TaskProcessor
from vidorch.tasks.queue import TaskQueue
from vidorch.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: TaskStore
    engine: StepEngine
    processor: TaskProcessor
    queue: TaskQueue
    waits: InputWaitRegistry = field(default_factory=InputWaitRegistry)
    push: PushNotificationService = field(default_factory=PushNotificationService)
    sessions: SessionRegistry = field(default_factory=SessionRegistry)
    collaborators: Optional[Collaborators] = None

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        collaborators: Optional[Collaborators] = None,
        interpreter: Optional[FeedbackInterpreter] = None,
    ) -> "AppContext":
        """Wire up a context; collaborators and interpreter default to the LLM/A2A ones."""
        settings = settings or default_settings

        if collaborators is None or interpreter is None:
            from vidorch.services.llm import get_adapter

            adapter = get_adapter(llm_config=settings.llm)
            if collaborators is None:
                from vidorch.services.a2a_collaborators import A2ACollaborators

                collaborators = A2ACollaborators.from_settings(settings, adapter)
            if interpreter is None:
                interpreter = LLMFeedbackInterpreter(
                    adapter, settings.llm.temperature, settings.llm.max_retries
                )

        store = TaskStore()
        engine = StepEngine(
            store,
            collaborators,
            interpreter,
            image_concurrency=settings.engine.image_concurrency,
            clip_concurrency=settings.engine.clip_concurrency,
            unknown_action_policy=settings.engine.unknown_action_policy,
        )
        processor = TaskProcessor(store, engine)
        queue = TaskQueue(
            store,
            processor.process,
            max_concurrent=settings.queue.max_concurrent,
            max_retries=settings.queue.max_retries,
            retry_delay=settings.queue.retry_delay,
        )
        logger.info(
            f"Context ready (max_concurrent={settings.queue.max_concurrent}, "
            f"max_retries={settings.queue.max_retries}, llm={settings.llm.model})"
        )
        context = cls(
            settings=settings,
            store=store,
            engine=engine,
            processor=processor,
            queue=queue,
            collaborators=collaborators,
        )
        store.add_status_listener(context.push.on_task_update)
        store.add_status_listener(context.sessions.on_task_update)
        return context

    async def close(self) -> None:
        for key in self.waits.pending_keys():
            self.waits.cancel(key)
        await self.queue.shutdown()
        await self.push.close()
        close = getattr(self.collaborators, "close", None)
        if close is not None:
            await close()
