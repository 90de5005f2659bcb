"""
Search Engine

Hybrid retrieval over notes: semantic (cosine similarity on stored
embeddings), temporal (windows resolved from the query) and lexical
(case-insensitive substring over content, title and tag names).

Design:
    - Every model dependency is optional. A missing, unready, busy or
      failing model degrades the query to the lexical path instead of
      raising. Search never shares a handle with a running job.
    - The LLM is only consulted for question-like queries.
    - Lexical matching is by whole phrase (the raw query, the query without
      its time expression, the interpreted query) and stays inside the
      temporal window.
    - The clock is injectable so temporal windows are deterministic in tests.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Sequence
from datetime import datetime

import numpy as np

from remen.core.config import settings
from remen.core.errors import InferenceError, NoteNotFoundError
from remen.models.schemas import (
    Note,
    SearchResponse,
    SearchResult,
    TemporalFilter,
    unique_preserving_order,
)
from remen.repositories.store import NoteStore
from remen.services.interpretation import (
    QueryInterpretation,
    extract_keywords,
    interpret_query,
    is_temporal_only,
    should_use_llm,
)
from remen.services.models import EmbeddingsModel, LLMModel, is_ready
from remen.services.temporal import parse_temporal

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_TOP_K = 5


def local_now() -> datetime:
    return datetime.now().astimezone()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} vs {len(b)}")
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(va, vb) / magnitude)


def _usable(embedding: list[float] | None, dimension: int) -> bool:
    return (
        embedding is not None
        and len(embedding) == dimension
        and all(math.isfinite(v) for v in embedding)
    )


def keyword_score(note: Note, terms: Sequence[str]) -> float:
    """
    Lexical relevance in [0, 1].

    Title and tag hits weigh 0.4 each; content occurrences add 0.1 each,
    capped at 0.5 per term. Averaged over the terms.
    """
    if not terms:
        return 0.0
    title = (note.title or "").lower()
    content = note.content.lower()
    tags = " ".join(note.tag_names)
    score = 0.0
    for term in terms:
        if len(term) < 2:
            continue
        if term in title:
            score += 0.4
        if term in tags:
            score += 0.4
        score += min(content.count(term) * 0.1, 0.5)
    return min(score / len(terms), 1.0)


def matches_lexically(note: Note, phrases: Sequence[str]) -> bool:
    """True when any whole phrase occurs in the content, the title or a tag name."""
    haystacks = (note.content.lower(), (note.title or "").lower(), *note.tag_names)
    return any(phrase and phrase in hay for phrase in phrases for hay in haystacks)


def _available(model: LLMModel | EmbeddingsModel | None) -> bool:
    # A generating handle is held by the queue worker
    return is_ready(model) and not model.is_generating  # type: ignore[union-attr]


class SearchEngine:
    """
    Query interface over the note store.

    Args:
        store: Note store to read candidates from.
        clock: Returns the current (timezone-aware) time.
        timeout: Per-inference-call bound in seconds (default from config).
    """

    def __init__(
        self,
        store: NoteStore,
        clock: Callable[[], datetime] = local_now,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._timeout = timeout or settings.INFERENCE_TIMEOUT

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def query(
        self,
        text: str,
        embeddings: EmbeddingsModel | None = None,
        llm: LLMModel | None = None,
    ) -> SearchResponse:
        """
        Run a hybrid search.

        Args:
            text: Free-text query, possibly a natural-language question.
            embeddings: Embeddings handle; lexical only when absent or unready.
            llm: LLM handle used to interpret question-like queries.

        Returns:
            Ranked results with the temporal filter and interpretation used.
        """
        text = text.strip()
        notes = await self._store.get_all_notes()
        if not text:
            return SearchResponse(
                results=[SearchResult.from_note(n, 0.0, "recent") for n in notes],
            )

        now = self._clock()

        # "what did I write yesterday": the window alone is the answer
        raw_parse = parse_temporal(text, now)
        if raw_parse is not None and is_temporal_only(raw_parse.remaining):
            logger.info("Temporal-only query (%s)", raw_parse.filter.description)
            return SearchResponse(
                results=self._in_window(notes, raw_parse.filter),
                temporal_filter=raw_parse.filter,
            )

        interpretation = await self._interpret(text, llm, now)

        temporal: TemporalFilter | None = None
        if interpretation is not None and interpretation.temporal_hint:
            hinted = parse_temporal(interpretation.temporal_hint, now)
            temporal = hinted.filter if hinted else None
        if temporal is None and raw_parse is not None:
            temporal = raw_parse.filter

        if interpretation is not None:
            semantic_text = interpretation.interpreted_query
        elif raw_parse is not None and raw_parse.remaining:
            semantic_text = raw_parse.remaining
        else:
            semantic_text = text

        terms = extract_keywords(semantic_text)
        phrases = [text]
        if raw_parse is not None and raw_parse.remaining:
            phrases.append(raw_parse.remaining)
        if interpretation is not None:
            phrases.append(interpretation.interpreted_query)
            extra = [t.lower() for t in interpretation.lexical_terms()]
            terms = [*terms, *(t for t in extra if t not in terms)]
        phrases = unique_preserving_order(p.strip().lower() for p in phrases if p.strip())

        candidates = (
            [n for n in notes if temporal.contains(n.created_at)] if temporal else notes
        )

        results: list[SearchResult] | None = None
        if candidates and _available(embeddings):
            results = await self._semantic(
                semantic_text,
                candidates,
                embeddings,  # type: ignore[arg-type]
                terms,
                phrases,
            )
        elif candidates and is_ready(embeddings):
            logger.debug("Embeddings busy with a queued job, using keyword search")

        if not results:
            results = self._lexical(candidates, terms, phrases)

        return SearchResponse(
            results=results[: settings.SEARCH_MAX_RESULTS],
            temporal_filter=temporal,
            interpreted_query=interpretation.interpreted_query if interpretation else None,
        )

    async def find_related_notes(
        self,
        note_id: str,
        embeddings: EmbeddingsModel | None = None,
        top_k: int = 5,
    ) -> list[SearchResult]:
        """
        Notes most similar to ``note_id`` by stored embedding.

        Returns an empty list when the model is not ready or the source
        note has no embedding yet.

        Raises:
            NoteNotFoundError: If the source note does not exist.
        """
        source = await self._store.get_note_by_id(note_id)
        if source is None:
            raise NoteNotFoundError(note_id)
        if not is_ready(embeddings) or source.embedding is None:
            return []
        dimension = len(source.embedding)
        if not _usable(source.embedding, dimension):
            return []

        scored: list[tuple[float, Note]] = []
        for note in await self._store.get_all_notes():
            if note.id == note_id or not _usable(note.embedding, dimension):
                continue
            similarity = cosine_similarity(source.embedding, note.embedding)  # type: ignore[arg-type]
            if similarity > settings.RELATED_MIN_SIMILARITY:
                scored.append((similarity, note))

        scored.sort(key=lambda s: (s[0], s[1].created_at), reverse=True)
        return [SearchResult.from_note(n, sim, "semantic") for sim, n in scored[:top_k]]

    # -------------------------------------------------------------------------
    # Internal stages
    # -------------------------------------------------------------------------

    async def _interpret(
        self,
        text: str,
        llm: LLMModel | None,
        now: datetime,
    ) -> QueryInterpretation | None:
        if not _available(llm) or not should_use_llm(text):
            return None
        try:
            return await asyncio.wait_for(
                interpret_query(text, llm, now),  # type: ignore[arg-type]
                timeout=self._timeout,
            )
        except (InferenceError, TimeoutError) as e:
            logger.warning("Query interpretation unavailable (%s): %s", type(e).__name__, e)
            return None
        except Exception:
            logger.exception("Query interpretation crashed, using the raw query")
            return None

    def _in_window(self, notes: list[Note], window: TemporalFilter) -> list[SearchResult]:
        span = max((window.end - window.start).total_seconds(), 1.0)
        hits = sorted(
            (n for n in notes if window.contains(n.created_at)),
            key=lambda n: n.created_at,
            reverse=True,
        )
        return [
            SearchResult.from_note(
                n,
                min(max((n.created_at - window.start).total_seconds() / span, 0.0), 1.0),
                "recent",
            )
            for n in hits
        ]

    async def _semantic(
        self,
        semantic_text: str,
        candidates: list[Note],
        embeddings: EmbeddingsModel,
        terms: list[str],
        phrases: list[str],
    ) -> list[SearchResult]:
        try:
            query_vector = await asyncio.wait_for(
                embeddings.forward(semantic_text),
                timeout=self._timeout,
            )
        except (InferenceError, TimeoutError) as e:
            logger.warning("Query embedding failed, using keyword search: %s", e)
            return []
        except Exception:
            logger.exception("Query embedding crashed, using keyword search")
            return []
        if not query_vector:
            return []
        dimension = len(query_vector)

        scored: list[tuple[float, Note]] = []
        unembedded: list[Note] = []
        for note in candidates:
            if _usable(note.embedding, dimension):
                similarity = cosine_similarity(query_vector, note.embedding)  # type: ignore[arg-type]
                scored.append((similarity, note))
            else:
                unembedded.append(note)

        by_rank = sorted(scored, key=lambda s: (s[0], s[1].created_at), reverse=True)
        hits = [s for s in by_rank if s[0] > settings.SEARCH_MIN_SIMILARITY]
        if not hits and by_rank and by_rank[0][0] >= settings.SEARCH_LOW_CONFIDENCE_SIMILARITY:
            hits = by_rank[:LOW_CONFIDENCE_TOP_K]
            logger.info(
                "No strong matches, returning %d low-confidence result(s) (best: %.2f)",
                len(hits),
                hits[0][0],
            )

        results = [
            SearchResult.from_note(
                note,
                similarity,
                "both" if keyword_score(note, terms) > 0 else "semantic",
            )
            for similarity, note in hits
        ]
        if results:
            results.extend(self._lexical(unembedded, terms, phrases))
        return results

    def _lexical(
        self,
        notes: list[Note],
        terms: list[str],
        phrases: list[str],
    ) -> list[SearchResult]:
        matched = [n for n in notes if matches_lexically(n, phrases)]
        ranked = sorted(
            ((keyword_score(n, terms), n) for n in matched),
            key=lambda s: (s[0], s[1].created_at),
            reverse=True,
        )
        return [SearchResult.from_note(n, score, "keyword") for score, n in ranked]
