"""
Note Store Contract

The narrow interface the queue, the pipeline and the search engine use to
read and write notes. ``NoteRepository`` implements it on PostgreSQL;
tests substitute an in-memory store.
"""

from __future__ import annotations

from typing import Protocol

from remen.models.schemas import EnrichmentOutcome, Note, NoteCreate, NoteUpdate, Tag


def normalize_tag_name(name: str) -> str:
    """Tags are stored lowercased and trimmed."""
    return name.strip().lower()


class NoteStore(Protocol):
    async def get_unprocessed_notes(self) -> list[Note]:
        """Notes not yet organized (and not cancelled), oldest first."""
        ...

    async def get_note_by_id(self, note_id: str) -> Note | None: ...

    async def update_note(self, note_id: str, update: NoteUpdate) -> Note:
        """
        Apply a partial update.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        ...

    async def apply_enrichment(self, note_id: str, outcome: EnrichmentOutcome) -> Note:
        """
        Atomically write title, type, tags, embedding and ``organized``.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        ...

    async def get_all_notes(self, skip: int = 0, limit: int | None = None) -> list[Note]:
        """Live notes, pinned first then newest first."""
        ...

    async def create_note(self, note_in: NoteCreate) -> Note: ...

    async def create_tag(self, name: str, is_auto: bool = True) -> Tag: ...

    async def get_tag_by_name(self, name: str) -> Tag | None: ...

    async def add_tag_to_note(self, note_id: str, tag_id: str) -> None: ...

    async def get_tags_for_note(self, note_id: str) -> list[Tag]: ...
