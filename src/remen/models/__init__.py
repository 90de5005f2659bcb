"""Models package - re-exports ORM records for convenient imports."""

from remen.models.base import Base, TimestampMixin
from remen.models.orm import NoteRecord, TagRecord, note_tags

__all__ = [
    "Base",
    "TimestampMixin",
    "NoteRecord",
    "TagRecord",
    "note_tags",
]
