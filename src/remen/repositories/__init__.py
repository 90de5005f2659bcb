"""Repositories package."""

from remen.repositories.notes import NoteRepository
from remen.repositories.store import NoteStore, normalize_tag_name

__all__ = [
    "NoteRepository",
    "NoteStore",
    "normalize_tag_name",
]
