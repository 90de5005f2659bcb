"""
AI Processing Queue

Single-worker scheduler funneling every enrichment job through the models.

Design:
    - Two FIFO tiers: ``pending`` (waiting on model readiness) and
      ``ready`` (admitted, waiting for the worker). At most one ``current``.
    - All bookkeeping happens synchronously before the first await of each
      operation, so admission and de-duplication are atomic on the event loop.
    - The head of ``ready`` becomes ``current`` synchronously and runs in a
      worker task; the next job starts only when it resolves. A pipeline
      failure marks the note ``failed`` and the queue moves on. No automatic
      retry.
    - Completion is broadcast to subscribers keyed by ``Subscription``
      handles; ``wait_for`` gives tests an awaitable per note.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from remen.core.errors import JobCancelled, NoteNotFoundError
from remen.models.schemas import AIStatus, Job, NoteUpdate, QueueStatus
from remen.repositories.store import NoteStore
from remen.services.models import EmbeddingsModel, LLMModel, is_ready
from remen.services.pipeline import CancellationToken, NoteProcessingPipeline, PipelineModels

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[str], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ``on_processing_complete``; pass it back to unsubscribe."""

    id: int


def promote(pending: Iterable[Job], models_ready: bool) -> tuple[list[Job], list[Job]]:
    """
    Pending -> ready transition.

    Promotion needs both models ready; jobs are released in their original
    order or not at all.

    Returns:
        (still_pending, newly_ready)
    """
    jobs = list(pending)
    if models_ready:
        return [], jobs
    return jobs, []


class AIQueue:
    """
    Scheduler owning the model handles and the enrichment worker.

    Args:
        store: Note store for status writes.
        pipeline: Pipeline run once per admitted job.
    """

    def __init__(self, store: NoteStore, pipeline: NoteProcessingPipeline) -> None:
        self._store = store
        self._pipeline = pipeline

        self._llm: LLMModel | None = None
        self._embeddings: EmbeddingsModel | None = None

        self._pending: deque[Job] = deque()
        self._ready: deque[Job] = deque()
        self._current: Job | None = None
        self._current_token: CancellationToken | None = None
        self._admitting: set[str] = set()
        # Bumped by cancel_all so in-flight admissions can tell they were cancelled
        self._generation = 0

        self._worker: asyncio.Task[None] | None = None
        self._subscribers: dict[Subscription, CompletionCallback] = {}
        self._subscription_ids = itertools.count(1)
        self._waiters: dict[str, list[asyncio.Future[AIStatus]]] = {}

    # -------------------------------------------------------------------------
    # Models
    # -------------------------------------------------------------------------

    @property
    def models_ready(self) -> bool:
        return is_ready(self._llm) and is_ready(self._embeddings)

    def set_models(
        self,
        llm: LLMModel | None,
        embeddings: EmbeddingsModel | None,
    ) -> None:
        """Replace the model handles and promote pending jobs if both are ready."""
        self._llm = llm
        self._embeddings = embeddings
        still_pending, newly_ready = promote(self._pending, self.models_ready)
        self._pending = deque(still_pending)
        if newly_ready:
            self._ready.extend(newly_ready)
            logger.info("Models ready, promoted %d pending job(s)", len(newly_ready))
        self._kick()

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def is_tracked(self, note_id: str) -> bool:
        """True while a job for ``note_id`` is pending, ready, current or being admitted."""
        if note_id in self._admitting:
            return True
        if self._current is not None and self._current.note_id == note_id:
            return True
        return any(j.note_id == note_id for j in self._ready) or any(
            j.note_id == note_id for j in self._pending
        )

    async def add(self, job: Job) -> bool:
        """
        Enqueue a job.

        Returns:
            False if a job for the same note is already tracked (or the
            admission was overtaken by ``cancel_all``), True otherwise.
        """
        if self.is_tracked(job.note_id):
            logger.debug("Note %s already queued, ignoring", job.note_id)
            return False

        self._admitting.add(job.note_id)
        generation = self._generation
        try:
            await self._store.update_note(job.note_id, NoteUpdate.status(AIStatus.QUEUED))
        finally:
            self._admitting.discard(job.note_id)

        if generation != self._generation:
            await self._write_status(job.note_id, NoteUpdate.status(AIStatus.CANCELLED))
            self._resolve_waiters(job.note_id, AIStatus.CANCELLED)
            return False

        if self.models_ready:
            self._ready.append(job)
        else:
            self._pending.append(job)
            logger.debug("Note %s pending until models are ready", job.note_id)
        self._kick()
        return True

    async def retry(self, note_id: str) -> bool:
        """
        Re-enqueue a note, typically one left ``failed`` or ``cancelled``.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        note = await self._store.get_note_by_id(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return await self.add(Job(note_id=note.id, content=note.content))

    async def recover(self) -> int:
        """Re-add notes left unfinished by a previous run. Returns the number admitted."""
        notes = await self._store.get_unprocessed_notes()
        admitted = 0
        for note in notes:
            if await self.add(Job(note_id=note.id, content=note.content)):
                admitted += 1
        if admitted:
            logger.info("Recovered %d unprocessed note(s)", admitted)
        return admitted

    # -------------------------------------------------------------------------
    # Status and cancellation
    # -------------------------------------------------------------------------

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            is_processing=self._current is not None,
            queue_length=len(self._ready),
            pending_queue_length=len(self._pending),
            current_job_id=self._current.note_id if self._current else None,
        )

    async def cancel_all(self) -> int:
        """
        Drop every queued job and stop the current one at its next stage boundary.

        Returns:
            Number of jobs cancelled (queued ones plus the current one).
        """
        dropped = [*self._pending, *self._ready]
        self._pending.clear()
        self._ready.clear()
        self._generation += 1

        cancelled = len(dropped)
        if self._current_token is not None and not self._current_token.is_cancelled:
            self._current_token.cancel()
            cancelled += 1

        for job in dropped:
            await self._write_status(job.note_id, NoteUpdate.status(AIStatus.CANCELLED))
            self._resolve_waiters(job.note_id, AIStatus.CANCELLED)

        logger.info("Cancelled %d job(s)", cancelled)
        return cancelled

    # -------------------------------------------------------------------------
    # Completion notifications
    # -------------------------------------------------------------------------

    def on_processing_complete(self, callback: CompletionCallback) -> Subscription:
        subscription = Subscription(next(self._subscription_ids))
        self._subscribers[subscription] = callback
        return subscription

    def remove_processing_complete_callback(
        self,
        handle: Subscription | CompletionCallback,
    ) -> None:
        """Unsubscribe by handle, or by callback for callers that kept it."""
        if isinstance(handle, Subscription):
            self._subscribers.pop(handle, None)
            return
        for subscription, callback in list(self._subscribers.items()):
            if callback is handle:
                del self._subscribers[subscription]

    def wait_for(self, note_id: str) -> asyncio.Future[AIStatus]:
        """
        Future resolved with the terminal status of the next job for ``note_id``.

        Register before (or while) the job is tracked. Futures still pending
        at ``close()`` are cancelled.
        """
        future: asyncio.Future[AIStatus] = asyncio.get_running_loop().create_future()
        # Drop futures the caller already gave up on (e.g. a timed-out wait)
        waiters = [f for f in self._waiters.get(note_id, []) if not f.done()]
        waiters.append(future)
        self._waiters[note_id] = waiters
        return future

    async def wait_until_idle(self) -> None:
        """Wait until no job is ready or running (pending jobs may remain)."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def close(self) -> None:
        """Stop the worker (application shutdown)."""
        if self._current_token is not None:
            self._current_token.cancel()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
        self._current = None
        self._current_token = None
        # Waiters for notes that never reached a terminal status
        for futures in self._waiters.values():
            for future in futures:
                future.cancel()
        self._waiters.clear()

    def _broadcast(self, note_id: str) -> None:
        for subscription, callback in list(self._subscribers.items()):
            # Honour removals made by earlier callbacks of this broadcast
            if subscription not in self._subscribers:
                continue
            try:
                callback(note_id)
            except Exception:
                logger.exception("Completion callback failed for note %s", note_id)

    def _resolve_waiters(self, note_id: str, status: AIStatus) -> None:
        for future in self._waiters.pop(note_id, []):
            if not future.done():
                future.set_result(status)

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _kick(self) -> None:
        """Promote the head of ``ready`` to ``current`` and start its task."""
        if self._current is not None or not self._ready:
            return
        if not self.models_ready:
            # Models went away after admission: hold jobs until set_models
            self._pending.extendleft(reversed(self._ready))
            self._ready.clear()
            logger.warning(
                "Models no longer ready, %d job(s) back to pending",
                len(self._pending),
            )
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, worker start deferred")
            return

        job = self._ready.popleft()
        token = CancellationToken()
        self._current = job
        self._current_token = token
        models = PipelineModels(llm=self._llm, embeddings=self._embeddings)  # type: ignore[arg-type]
        self._worker = loop.create_task(
            self._run(job, models, token),
            name=f"ai-queue-{job.note_id[:8]}",
        )

    async def _run(
        self,
        job: Job,
        models: PipelineModels,
        token: CancellationToken,
    ) -> None:
        status = await self._process(job, models, token)

        self._current = None
        self._current_token = None
        self._resolve_waiters(job.note_id, status)
        self._broadcast(job.note_id)
        self._kick()

    async def _process(
        self,
        job: Job,
        models: PipelineModels,
        token: CancellationToken,
    ) -> AIStatus:
        try:
            await self._store.update_note(job.note_id, NoteUpdate.status(AIStatus.PROCESSING))
            await self._pipeline.run(job, models, token)
        except JobCancelled:
            logger.info("Note %s cancelled", job.note_id)
            await self._write_status(job.note_id, NoteUpdate.status(AIStatus.CANCELLED))
            return AIStatus.CANCELLED
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.error("AI processing failed for note %s: %s", job.note_id, reason)
            await self._write_status(
                job.note_id,
                NoteUpdate.status(AIStatus.FAILED, error=reason),
            )
            return AIStatus.FAILED
        return AIStatus.ORGANIZED

    async def _write_status(self, note_id: str, update: NoteUpdate) -> None:
        try:
            await self._store.update_note(note_id, update)
        except NoteNotFoundError:
            logger.warning("Note %s vanished before status %s was written", note_id, update.ai_status)
        except Exception:
            logger.exception("Could not write status %s for note %s", update.ai_status, note_id)
