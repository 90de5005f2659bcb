"""
Domain Schemas

Pydantic models and plain dataclasses for the data flowing between
the note store, the processing queue and the search engine.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AIStatus(StrEnum):
    """Per-note enrichment state machine (persisted with the note)."""

    UNPROCESSED = "unprocessed"
    QUEUED = "queued"
    PROCESSING = "processing"
    ORGANIZED = "organized"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NoteType(StrEnum):
    NOTE = "note"
    MEETING = "meeting"
    TASK = "task"
    IDEA = "idea"
    JOURNAL = "journal"
    REFERENCE = "reference"
    VOICE = "voice"
    SCAN = "scan"


# Types the classifier may assign; voice and scan are set at capture time
CLASSIFIABLE_TYPES: tuple[NoteType, ...] = (
    NoteType.MEETING,
    NoteType.TASK,
    NoteType.IDEA,
    NoteType.JOURNAL,
    NoteType.REFERENCE,
    NoteType.NOTE,
)

CAPTURE_TYPES: frozenset[NoteType] = frozenset({NoteType.VOICE, NoteType.SCAN})


def _as_float_list(value: Any) -> list[float] | None:
    # pgvector hands back numpy arrays; the domain works with plain lists
    if value is None:
        return None
    return [float(v) for v in value]


class Tag(BaseModel):
    """A tag attached to a note."""

    id: str
    name: str
    is_auto: bool = True

    model_config = ConfigDict(from_attributes=True)


class Note(BaseModel):
    """
    Note as read from the store.

    The scheduler and search engine only ever hold snapshots of this model;
    the store remains the source of truth.
    """

    id: str
    content: str
    title: str | None = None
    type: NoteType = NoteType.NOTE
    created_at: datetime
    updated_at: datetime
    is_processed: bool = False
    ai_status: AIStatus = AIStatus.UNPROCESSED
    ai_error: str | None = None
    embedding: list[float] | None = None
    is_pinned: bool = False
    is_archived: bool = False
    is_deleted: bool = False
    tags: list[Tag] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)  # Enables ORM model conversion

    @field_validator("embedding", mode="before")
    @classmethod
    def _coerce_embedding(cls, value: Any) -> list[float] | None:
        return _as_float_list(value)

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]


class NoteCreate(BaseModel):
    """Input for creating a note (capture flows, API)."""

    content: str = Field(..., min_length=1, description="Plain text content")
    title: str | None = Field(None, max_length=200)
    type: NoteType = NoteType.NOTE
    is_pinned: bool = False
    created_at: datetime | None = None


class NoteUpdate(BaseModel):
    """
    Partial note update.

    Only explicitly set fields are written (``exclude_unset``). Writing
    ``ai_status`` also writes the derived fields so that
    ``is_processed == (ai_status == organized)`` always holds and
    ``ai_error`` never outlives the ``failed`` state.
    """

    content: str | None = None
    title: str | None = None
    type: NoteType | None = None
    ai_status: AIStatus | None = None
    ai_error: str | None = None
    is_processed: bool | None = None
    is_pinned: bool | None = None

    @model_validator(mode="after")
    def _sync_status_fields(self) -> NoteUpdate:
        if "ai_status" not in self.model_fields_set or self.ai_status is None:
            return self
        self.is_processed = self.ai_status == AIStatus.ORGANIZED
        if self.ai_status != AIStatus.FAILED:
            self.ai_error = None
        return self

    @classmethod
    def status(cls, status: AIStatus, error: str | None = None) -> NoteUpdate:
        """Build a status-only update."""
        if error is not None:
            return cls(ai_status=status, ai_error=error)
        return cls(ai_status=status)


@dataclass(frozen=True)
class Job:
    """
    One request to enrich a note.

    ``content`` is the snapshot taken at enqueue time; the pipeline
    re-reads title and type from the store when it runs.
    """

    note_id: str
    content: str
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class EnrichmentOutcome:
    """Everything the pipeline writes on the transition into ``organized``."""

    type: NoteType
    tags: tuple[str, ...]
    embedding: list[float]
    title: str | None = None


class QueueStatus(BaseModel):
    """Derived snapshot of the processing queue."""

    is_processing: bool
    queue_length: int = Field(description="Admitted jobs waiting for the worker")
    pending_queue_length: int = Field(description="Jobs waiting on model readiness")
    current_job_id: str | None = None


class TemporalFilter(BaseModel):
    """A resolved ``[start, end)`` window extracted from a query."""

    description: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


class SearchResult(BaseModel):
    """Single ranked note returned by the search engine."""

    id: str
    score: float = Field(description="Cosine similarity or keyword relevance")
    match_type: str = Field(description="'semantic', 'keyword', 'both' or 'recent'")
    title: str | None = None
    excerpt: str
    type: NoteType = NoteType.NOTE
    created_at: datetime
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_note(
        cls,
        note: Note,
        score: float,
        match_type: str,
        excerpt_length: int = 160,
    ) -> SearchResult:
        excerpt = " ".join(note.content.split())
        if len(excerpt) > excerpt_length:
            excerpt = excerpt[:excerpt_length].rstrip() + "..."
        return cls(
            id=note.id,
            score=round(score, 4),
            match_type=match_type,
            title=note.title,
            excerpt=excerpt,
            type=note.type,
            created_at=note.created_at,
            tags=note.tag_names,
        )


class SearchResponse(BaseModel):
    """Result of ``SearchEngine.query``."""

    results: list[SearchResult] = Field(default_factory=list)
    temporal_filter: TemporalFilter | None = None
    interpreted_query: str | None = None


def unique_preserving_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out
