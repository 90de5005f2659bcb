"""
API Schemas

Pydantic models for the HTTP request/response cycle. Domain models live
in ``remen.models.schemas``; these add request validation and keep
embeddings out of responses.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from remen.models.schemas import AIStatus, Note, NoteType
from remen.services.classifier import get_note_type_badge


class NoteResponse(BaseModel):
    """Note as returned to clients (no embedding payload)."""

    id: str
    content: str
    title: str | None = None
    type: NoteType
    badge: dict[str, str]
    ai_status: AIStatus
    ai_error: str | None = None
    is_processed: bool
    is_pinned: bool
    has_embedding: bool
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_note(cls, note: Note) -> NoteResponse:
        return cls(
            id=note.id,
            content=note.content,
            title=note.title,
            type=note.type,
            badge=get_note_type_badge(note.type),
            ai_status=note.ai_status,
            ai_error=note.ai_error,
            is_processed=note.is_processed,
            is_pinned=note.is_pinned,
            has_embedding=note.embedding is not None,
            tags=note.tag_names,
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class SearchRequest(BaseModel):
    """Request body for hybrid search. An empty query lists all notes."""

    query: str = Field(
        default="",
        max_length=2000,
        description="Keywords or a natural-language question",
    )


class EnqueueResponse(BaseModel):
    note_id: str
    queued: bool = Field(description="False when a job for the note was already tracked")


class CancelResponse(BaseModel):
    cancelled: int = Field(description="Jobs cancelled, including the running one")


class TagAssign(BaseModel):
    """Request body for tagging a note by hand."""

    name: str = Field(..., min_length=1, max_length=100, pattern=r"\S")
