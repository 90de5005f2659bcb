"""
Service Container

Composition root: builds the note store, model handles, queue and search
engine once per process and wires them together. The FastAPI app keeps
the container on ``app.state``; tests build their own with fakes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from remen.core.config import settings
from remen.core.database import get_session_factory
from remen.repositories.notes import NoteRepository
from remen.repositories.store import NoteStore
from remen.services.models import (
    ManagedEmbeddings,
    ManagedLLM,
    OllamaLLM,
    SentenceTransformerEmbeddings,
)
from remen.services.pipeline import NoteProcessingPipeline
from remen.services.queue import AIQueue
from remen.services.search import SearchEngine, local_now

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: NoteStore
    llm: ManagedLLM
    embeddings: ManagedEmbeddings
    queue: AIQueue
    search: SearchEngine
    _model_task: asyncio.Task[None] | None = field(default=None, repr=False)

    async def start(self) -> None:
        """
        Recover interrupted work, then bring the models up in the background.

        Recovered jobs wait in ``pending`` until both models report ready.
        """
        await self.queue.recover()
        self._model_task = asyncio.create_task(self._watch_models(), name="model-loader")

    async def load_models(self) -> bool:
        """Load whichever model is not ready yet and hand both to the queue."""
        if not self.llm.is_ready:
            await self.llm.load()
        if not self.embeddings.is_ready:
            await self.embeddings.load()
        self.queue.set_models(self.llm, self.embeddings)
        return self.queue.models_ready

    async def _watch_models(self) -> None:
        while not await self.load_models():
            logger.info(
                "Models not ready (llm=%s, embeddings=%s), retrying in %.0fs",
                self.llm.is_ready,
                self.embeddings.is_ready,
                settings.MODEL_LOAD_RETRY_SECONDS,
            )
            await asyncio.sleep(settings.MODEL_LOAD_RETRY_SECONDS)
        logger.info("All models ready")

    async def stop(self) -> None:
        if self._model_task is not None and not self._model_task.done():
            self._model_task.cancel()
            await asyncio.gather(self._model_task, return_exceptions=True)
        await self.queue.close()


def build_services(
    store: NoteStore | None = None,
    llm: ManagedLLM | None = None,
    embeddings: ManagedEmbeddings | None = None,
    clock: Callable[[], datetime] = local_now,
) -> ServiceContainer:
    """
    Wire the application services.

    Args:
        store: Note store (default: PostgreSQL repository).
        llm: LLM handle (default: Ollama).
        embeddings: Embeddings handle (default: sentence-transformers).
        clock: Time source for temporal search.
    """
    store = store or NoteRepository(get_session_factory())
    llm = llm or OllamaLLM()
    embeddings = embeddings or SentenceTransformerEmbeddings()

    pipeline = NoteProcessingPipeline(store, dimension=settings.EMBEDDING_DIMENSION)
    return ServiceContainer(
        store=store,
        llm=llm,
        embeddings=embeddings,
        queue=AIQueue(store, pipeline),
        search=SearchEngine(store, clock=clock),
    )
