"""
Pipeline engine: a cooperative, tick-driven scheduler over four queues.

Each tick runs one batch of one phase, chosen by priority:
revision > review > generation. When all three are empty the engine goes
idle. Ticks never overlap: the next one is scheduled only after the current
one, including its persistence writes, has finished.

Usage:
    engine = Engine.from_settings(settings)
    await engine.load()
    await engine.add_concepts(["Inversion", "Second-order thinking"])
    await engine.start()
    ...
    await engine.aclose()
"""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from .critic import Critic, build_critic
from .events import EngineEvent, EventBus, EventType
from .models import EngineStatus, PipelineState, QueueName, Task
from .notes import NoteStore
from .prompts import PromptBuilder
from .store import ContentStore, QueueStore
from .text import clean_markdown_output, extract_linked_concepts, sanitize_filename
from ..core.config import Settings, parse_lines
from ..llm.router import AllProvidersFailedError, FailoverRouter

logger = logging.getLogger(__name__)

CONTENT_LOST_REASON = "content lost"
UNKNOWN_REASON = "unknown reason"


class Engine:
    """
    Orchestrates generation, review and revision of concepts.

    Features:
    - Strict phase priority and batched extraction
    - Concurrent generation calls, sequential review and revision
    - Front-of-queue retry after credential exhaustion
    - Retry ceiling with a manually recoverable discard pile
    - Snapshot persistence at every batch boundary
    - Event stream for observers
    """

    def __init__(
        self,
        settings: Settings,
        router: FailoverRouter,
        critic: Critic,
        prompts: PromptBuilder,
        queue_store: QueueStore,
        content_store: ContentStore,
        note_store: NoteStore,
        events: Optional[EventBus] = None,
    ):
        self.settings = settings
        self.router = router
        self.critic = critic
        self.prompts = prompts
        self.queue_store = queue_store
        self.content_store = content_store
        self.note_store = note_store
        self.events = events or EventBus()

        self.state = PipelineState()
        self._running = False
        self._ticking = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._persist_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Engine":
        """Wire an engine and its collaborators from settings."""
        events = EventBus()

        async def notify(message: str) -> None:
            await events.publish(EngineEvent(EventType.NOTICE, message))

        router = FailoverRouter.from_settings(settings, notifier=notify)
        prompts = PromptBuilder.from_settings(settings)
        return cls(
            settings=settings,
            router=router,
            critic=build_critic(settings, router, prompts),
            prompts=prompts,
            queue_store=QueueStore(settings.queue_file),
            content_store=ContentStore(settings.cache_dir),
            note_store=NoteStore(settings.output_dir),
            events=events,
        )

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def status(self) -> EngineStatus:
        return self.state.status

    async def load(self) -> None:
        """Restore queues from the last snapshot."""
        state = await asyncio.to_thread(self.queue_store.load)
        if state is not None:
            if state.status == EngineStatus.RUNNING:
                # No tick survives a restart
                state.status = EngineStatus.PAUSED
            self.state = state
            logger.info(f"Restored pipeline state: {self.state.status_line()}")
        await self._publish_state()

    async def start(self) -> None:
        """Start (or resume) the engine; the first tick runs immediately."""
        if self._running:
            return
        self._running = True
        self.state.status = EngineStatus.RUNNING
        await self._notice("Knowledge graph engine started.")
        await self._commit()
        self._spawn_tick()

    async def pause(self) -> None:
        """Stop scheduling ticks. A tick already in flight runs to completion."""
        if not self._running:
            return
        self._running = False
        self.state.status = EngineStatus.PAUSED
        self._cancel_timer()
        await self._notice("Knowledge graph engine paused.")
        await self._commit()

    async def toggle(self) -> EngineStatus:
        if self._running:
            await self.pause()
        else:
            await self.start()
        return self.state.status

    async def wait_for_tick(self) -> None:
        """Wait for the tick currently in flight, if any."""
        if self._tick_task is not None and not self._tick_task.done():
            await self._tick_task

    async def aclose(self) -> None:
        """Pause, let any in-flight tick finish, and release network clients."""
        await self.pause()
        await self.wait_for_tick()
        await self.router.close()

    def _spawn_tick(self) -> None:
        self._timer = None
        if self._tick_task is not None and not self._tick_task.done():
            # The in-flight tick schedules its successor when it completes
            return
        self._tick_task = asyncio.get_running_loop().create_task(self.tick())

    def _schedule_next_tick(self) -> None:
        if not self._running:
            return
        self._cancel_timer()
        delay = max(0.0, self.settings.request_delay)
        self._timer = asyncio.get_running_loop().call_later(delay, self._spawn_tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # --- Core Loop ---

    def next_phase(self) -> Optional[QueueName]:
        """Which phase the next tick would run."""
        if self.state.revision_queue:
            return QueueName.REVISION
        if self.state.review_queue:
            return QueueName.REVIEW
        if self.state.generation_queue:
            return QueueName.GENERATION
        return None

    async def tick(self) -> None:
        """
        Run one batch of the highest-priority phase.

        Any uncaught error pauses the engine; state persisted so far stays
        consistent for a later resume.
        """
        if not self._running or self._ticking:
            return
        self._ticking = True
        self._cancel_timer()

        try:
            phase = self.next_phase()
            if phase is None:
                await self._finish()
                return

            phases: dict[QueueName, Callable[[], Awaitable[bool]]] = {
                QueueName.REVISION: self.run_revision_phase,
                QueueName.REVIEW: self.run_review_phase,
                QueueName.GENERATION: self.run_generation_phase,
            }
            await phases[phase]()

        except Exception as e:
            logger.exception("Fatal error during engine tick")
            await self._notice(
                f"Engine hit an error and was paused: {e}",
                event_type=EventType.ERROR,
            )
            await self.pause()
            return

        finally:
            self._ticking = False

        self._schedule_next_tick()

    async def _finish(self) -> None:
        self._running = False
        self.state.status = EngineStatus.IDLE
        await self._notice("All tasks complete. Engine stopped.")
        await self._commit()

    # --- Phases ---

    def _take_batch(self, queue: list) -> list:
        size = max(1, self.settings.generation_batch_size)
        batch = queue[:size]
        del queue[:size]
        return batch

    async def run_generation_phase(self) -> bool:
        """
        Generate a batch of concepts concurrently.

        Returns:
            True if a batch was processed
        """
        queue = self.state.generation_queue
        if not queue:
            return False

        batch = self._take_batch(queue)
        await self._commit()

        results = await asyncio.gather(
            *(self._generate(idea) for idea in batch),
            return_exceptions=True,
        )

        retry: list[str] = []
        for idea, result in zip(batch, results):
            if isinstance(result, Task):
                self.state.review_queue.append(result)
            elif isinstance(result, AllProvidersFailedError):
                logger.error(f"Generation failed: {idea} - {result}")
                retry.append(idea)
            elif isinstance(result, Exception):
                # Not retryable: a malformed response would fail the same way again
                logger.warning(f"Generation failed and was dropped: {idea} - {result!r}")
                await self._notice(f"Generation of '{idea}' failed and was dropped: {result}")
            elif isinstance(result, BaseException):
                raise result

        if retry:
            queue[0:0] = retry
            await self._notice(
                f"All API credentials failed; {len(retry)} concept(s) requeued.",
                event_type=EventType.ERROR,
                requeued=retry,
            )

        await self._commit()
        return True

    async def _generate(self, idea: str) -> Task:
        prompt = self.prompts.generation_prompt(idea)
        content = clean_markdown_output(await self.router.call(prompt))
        task = Task(idea=idea, content=content)
        await self.content_store.save(task.task_id, content)
        logger.info(f"Generated: {idea}")
        return task

    async def run_review_phase(self) -> bool:
        """
        Judge a batch of tasks, one at a time.

        Returns:
            True if a batch was processed
        """
        queue = self.state.review_queue
        if not queue:
            return False

        batch = self._take_batch(queue)
        await self._commit()

        linked: dict[str, None] = {}
        for task in batch:
            content = await self._load_content(task)
            if content is None:
                self._discard(task, CONTENT_LOST_REASON)
                continue

            verdict = await self.critic.judge(content)
            if verdict.approved:
                await self._save_note(task, content)
                if self.settings.extract_new_concepts:
                    for concept in extract_linked_concepts(content):
                        linked.setdefault(concept, None)
                logger.info(f"Approved: {task.idea}")
            else:
                task.reason = verdict.reason
                task.retries += 1
                self.state.revision_queue.append(task)
                logger.warning(f"Rejected: {task.idea} - {verdict.reason}")

        if linked:
            added = self._enqueue(linked)
            if added:
                logger.info(f"Seeded {added} linked concept(s) into the generation queue")

        await self._commit()
        return True

    async def _save_note(self, task: Task, content: str) -> None:
        if await self.note_store.upsert(task.idea, content):
            await self.content_store.delete(task.task_id)
            await self._notice(f"Note saved: {sanitize_filename(task.idea)}")
        else:
            await self._notice(
                f"Could not save note: {sanitize_filename(task.idea)}",
                event_type=EventType.ERROR,
            )

    async def run_revision_phase(self) -> bool:
        """
        Revise a batch of rejected tasks, one at a time.

        Tasks at the retry ceiling go to the discard pile without an API call.

        Returns:
            True if a batch was processed
        """
        queue = self.state.revision_queue
        if not queue:
            return False

        batch = self._take_batch(queue)
        await self._commit()

        retry: list[Task] = []
        for task in batch:
            if task.retries >= self.settings.max_revision_retries:
                logger.error(f"Giving up on {task.idea}: reached the maximum of "
                             f"{self.settings.max_revision_retries} revision(s)")
                self._discard(task)
                continue

            content = await self._load_content(task)
            if content is None:
                self._discard(task, CONTENT_LOST_REASON)
                continue

            prompt = self.prompts.revision_prompt(task.idea, content, task.reason or UNKNOWN_REASON)
            try:
                revised = clean_markdown_output(await self.router.call(prompt))
                await self.content_store.save(task.task_id, revised)
            except (AllProvidersFailedError, OSError) as e:
                logger.error(f"Revision failed: {task.idea} - {e}")
                retry.append(task)
                continue

            task.content = revised
            self.state.review_queue.append(task)
            logger.info(f"Revised: {task.idea}")

        if retry:
            queue[0:0] = retry

        await self._commit()
        return True

    async def _load_content(self, task: Task) -> Optional[str]:
        if task.content is not None:
            return task.content
        task.content = await self.content_store.load(task.task_id)
        return task.content

    def _discard(self, task: Task, reason: Optional[str] = None) -> None:
        if reason is not None:
            task.reason = reason
            logger.error(f"Discarded {task.idea}: {reason}")
        task.content = None
        self.state.discarded_pile.append(task)

    # --- Public Controls ---

    def _active_ideas(self) -> set[str]:
        """Ideas in the generation, review or revision queue."""
        ideas = set(self.state.generation_queue)
        ideas.update(t.idea for t in self.state.review_queue)
        ideas.update(t.idea for t in self.state.revision_queue)
        return ideas

    def _enqueue(self, concepts: Iterable[str]) -> int:
        """Append new concepts, skipping ones already in the pipeline or already saved."""
        current = self._active_ideas()
        existing = self.note_store.titles()

        added = 0
        for concept in concepts:
            concept = concept.strip()
            sanitized = sanitize_filename(concept)
            if not sanitized or concept in current or sanitized in existing:
                continue
            self.state.generation_queue.append(concept)
            current.add(concept)
            added += 1
        return added

    async def add_concepts(self, concepts: Iterable[str]) -> int:
        """
        Add concepts to the generation queue.

        Args:
            concepts: Concepts to add

        Returns:
            Number of concepts actually added
        """
        added = self._enqueue(concepts)
        if added:
            await self._commit()
        return added

    async def add_concept(self, concept: str) -> bool:
        if await self.add_concepts([concept]):
            await self._notice(f"'{concept}' added to the generation queue.")
            return True
        await self._notice(f"'{concept}' already exists in the queue or the note store; not added.")
        return False

    async def enqueue_seed_concepts(self) -> int:
        """Queue every concept listed in the settings seed box."""
        return await self.add_concepts(parse_lines(self.settings.seed_concepts))

    async def remove_concept(self, concept: str) -> bool:
        if concept not in self.state.generation_queue:
            return False
        self.state.generation_queue.remove(concept)
        await self._commit()
        return True

    async def discard_task(self, idea: str, queue: QueueName = QueueName.REVIEW) -> bool:
        """Manually move a task from the review or revision queue to the discard pile."""
        if queue == QueueName.REVIEW:
            source = self.state.review_queue
        elif queue == QueueName.REVISION:
            source = self.state.revision_queue
        else:
            raise ValueError(f"Cannot discard from the {queue.value} queue")

        task = _find_task(source, idea)
        if task is None:
            return False
        source.remove(task)
        self._discard(task)
        await self._commit()
        return True

    async def requeue_discarded(self, idea: str) -> bool:
        """
        Move a discarded task's idea back into the generation queue.

        The idea re-enters as a fresh concept: reason, retries and cached
        content are dropped.
        """
        task = _find_task(self.state.discarded_pile, idea)
        if task is None:
            return False

        self.state.discarded_pile.remove(task)
        # Cached content is shared by task id with any active task for the idea
        if task.idea not in self._active_ideas():
            await self.content_store.delete(task.task_id)
            self.state.generation_queue.append(task.idea)
        await self._commit()
        return True

    def summary(self) -> dict:
        """Status, counts and queue contents for observers."""
        return {
            "status": self.state.status.value,
            "status_line": self.state.status_line(),
            "counts": self.state.counts(),
            "queues": self.state.to_snapshot(),
            "credentials": self.router.pool.snapshot(),
        }

    # --- Persistence & Events ---

    async def _commit(self) -> None:
        """Persist the snapshot, then tell observers the state changed."""
        await self._persist()
        await self._publish_state()

    async def _persist(self) -> None:
        # Writes land in call order; each one snapshots the state it sees
        async with self._persist_lock:
            snapshot = self.state.to_snapshot()
            await asyncio.to_thread(self.queue_store.write_snapshot, snapshot)

    async def _publish_state(self) -> None:
        await self.events.publish(EngineEvent(
            EventType.STATE_CHANGED,
            self.state.status_line(),
            data={"status": self.state.status.value, "counts": self.state.counts()},
        ))

    async def _notice(
        self,
        message: str,
        event_type: EventType = EventType.NOTICE,
        **data,
    ) -> None:
        if event_type == EventType.ERROR:
            logger.error(message)
        else:
            logger.info(message)
        await self.events.publish(EngineEvent(event_type, message, data=data))


def _find_task(queue: list[Task], idea: str) -> Optional[Task]:
    for task in queue:
        if task.idea == idea:
            return task
    return None
