"""
Note Store Database Models

SQLAlchemy 2.0 ORM models for notes and their tags.
Uses pgvector for the note embedding column.

Tables:
    notes    : Captured notes with AI enrichment state and embedding.
    tags     : Unique tag names, flagged when assigned by the AI pipeline.
    note_tags: Many-to-many association between notes and tags.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from remen.core.config import settings
from remen.models.base import Base, TimestampMixin

note_tags = Table(
    "note_tags",
    Base.metadata,
    Column(
        "note_id",
        String(36),
        ForeignKey("notes.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "tag_id",
        String(36),
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


def _new_id() -> str:
    return str(uuid.uuid4())


class TagRecord(Base):
    """
    Persistent tag.

    Names are stored lowercased and trimmed, so the unique constraint
    on ``name`` is a case-insensitive uniqueness guarantee.

    Attributes:
        id: UUID string primary key.
        name: Normalized tag name (unique).
        is_auto: True when created by the enrichment pipeline.
    """

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    is_auto: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TagRecord(name='{self.name}', auto={self.is_auto})>"


class NoteRecord(Base, TimestampMixin):
    """
    Persistent note with AI enrichment state.

    Attributes:
        id: UUID string primary key.
        content: Plain text content.
        title: User-set or AI-generated title (nullable until processed).
        type: Note type badge (note, meeting, task, idea, journal,
            reference, voice, scan).
        is_processed: Mirrors ``ai_status == 'organized'``.
        ai_status: Job state machine, persisted to survive restarts.
        ai_error: Failure reason while ``ai_status == 'failed'``.
        embedding: Vector for semantic search (nullable until organized).
        is_pinned / is_archived / is_deleted: list and trash flags.
        tags: Related TagRecord instances.
    """

    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    type: Mapped[str] = mapped_column(String(20), default="note", nullable=False)
    is_processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ai_status: Mapped[str] = mapped_column(
        String(20),
        default="unprocessed",
        nullable=False,
        index=True,
    )
    ai_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.EMBEDDING_DIMENSION),
        nullable=True,
    )
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    tags: Mapped[list[TagRecord]] = relationship(
        secondary=note_tags,
        order_by="TagRecord.name",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<NoteRecord(id={self.id:.8}, status='{self.ai_status}')>"
