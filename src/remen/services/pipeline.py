"""
Note Processing Pipeline

Ordered enrichment stages for one job: classify, title, embed, persist.

Design:
    - Each stage starts with ``token.raise_if_cancelled()``; cancellation
      is observed at stage boundaries only.
    - Every inference call is bounded by ``asyncio.wait_for``; a timeout is
      an ``InferenceError`` like any other model failure.
    - Nothing is written until the final stage, which hands the whole
      outcome to ``NoteStore.apply_enrichment`` in one transaction.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from remen.core.config import settings
from remen.core.errors import InferenceError, JobCancelled, NoteNotFoundError
from remen.models.schemas import EnrichmentOutcome, Job, NoteType
from remen.repositories.store import NoteStore
from remen.services import classifier
from remen.services.models import EmbeddingsModel, LLMModel, Message
from remen.services.prompts import (
    CLASSIFY_SYSTEM,
    DEFAULT_TITLE_EXAMPLE,
    TITLE_EXAMPLES,
    TITLE_SYSTEM_TEMPLATE,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLASSIFY_PREVIEW_CHARS = 400
TITLE_PREVIEW_CHARS = 350


class CancellationToken:
    """Cooperative cancellation flag shared by the queue and one pipeline run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise JobCancelled()


@dataclass(frozen=True)
class PipelineModels:
    """Model handles captured by the queue when a job starts."""

    llm: LLMModel
    embeddings: EmbeddingsModel


class NoteProcessingPipeline:
    """
    Runs the enrichment stages for a single job.

    Args:
        store: Note store used to read the note and persist the outcome.
        timeout: Per-inference-call bound in seconds (default from config).
        dimension: Expected embedding length; None accepts any non-empty vector.
    """

    def __init__(
        self,
        store: NoteStore,
        timeout: float | None = None,
        dimension: int | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout or settings.INFERENCE_TIMEOUT
        self._dimension = dimension

    async def run(
        self,
        job: Job,
        models: PipelineModels,
        token: CancellationToken,
    ) -> EnrichmentOutcome:
        """
        Enrich the note referenced by ``job`` and persist the result.

        Returns:
            The outcome that was written.

        Raises:
            JobCancelled: If the token was cancelled before a stage started.
            InferenceError: If a model call failed, timed out or returned
                an unusable embedding.
            NoteNotFoundError: If the note disappeared from the store.
        """
        token.raise_if_cancelled()
        note = await self._store.get_note_by_id(job.note_id)
        if note is None:
            raise NoteNotFoundError(job.note_id)
        content = job.content

        # Stage 1: classification
        token.raise_if_cancelled()
        note_type, tags = await self._classify(content, models.llm)
        note_type = classifier.resolve_type(note_type, note.type)

        # Stage 2: title (user titles are never overwritten)
        token.raise_if_cancelled()
        title = None
        if not note.title:
            title = await self._generate_title(content, note_type, models.llm)

        # Stage 3: embedding
        token.raise_if_cancelled()
        embedding = await self._embed(content, models.embeddings)

        # Stage 4: persistence
        token.raise_if_cancelled()
        outcome = EnrichmentOutcome(
            type=note_type,
            tags=tuple(tags),
            embedding=embedding,
            title=title,
        )
        await self._store.apply_enrichment(job.note_id, outcome)
        logger.info(
            "Note %s organized (type=%s, tags=%d, dim=%d)",
            job.note_id,
            note_type,
            len(tags),
            len(embedding),
        )
        return outcome

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _bounded(self, call: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError as e:
            raise InferenceError(f"{what} timed out after {self._timeout:.0f}s") from e

    async def _classify(self, content: str, llm: LLMModel) -> tuple[NoteType, list[str]]:
        heuristic_tags = classifier.extract_tags(content)
        if len(content.strip()) < classifier.SHORT_CONTENT_LENGTH:
            return classifier.classify_with_rules(content).type, heuristic_tags

        messages: list[Message] = [
            {"role": "system", "content": CLASSIFY_SYSTEM},
            {"role": "user", "content": content[:CLASSIFY_PREVIEW_CHARS]},
        ]
        raw = await self._bounded(llm.generate(messages), "Classification")
        result = classifier.parse_classification(raw)
        return result.type, classifier.merge_tags(result.tags, heuristic_tags)

    async def _generate_title(self, content: str, note_type: NoteType, llm: LLMModel) -> str:
        if len(content.strip()) < classifier.SHORT_CONTENT_LENGTH:
            return classifier.fallback_title(content, note_type)

        example = TITLE_EXAMPLES.get(note_type.value, DEFAULT_TITLE_EXAMPLE)
        messages: list[Message] = [
            {"role": "system", "content": TITLE_SYSTEM_TEMPLATE.format(example=example)},
            {"role": "user", "content": content[:TITLE_PREVIEW_CHARS].strip()},
        ]
        raw = await self._bounded(llm.generate(messages), "Title generation")
        title = classifier.clean_title(raw)
        if len(title) > 3:
            return title
        return classifier.rule_based_title(content, note_type)

    async def _embed(self, content: str, embeddings: EmbeddingsModel) -> list[float]:
        vector = await self._bounded(embeddings.forward(content), "Embedding")
        if not vector:
            raise InferenceError("Embedding model returned an empty vector")
        if not all(math.isfinite(v) for v in vector):
            raise InferenceError("Embedding contains non-finite values")
        if self._dimension is not None and len(vector) != self._dimension:
            raise InferenceError(
                f"Embedding dimension {len(vector)} != expected {self._dimension}"
            )
        return [float(v) for v in vector]
