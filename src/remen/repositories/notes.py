"""
Note Repository

PostgreSQL implementation of the NoteStore contract.

Design:
    - One short-lived session per call; no session is held across an
      inference call by the queue or the search engine.
    - Returns pydantic snapshots (``Note``/``Tag``), never live ORM objects.
    - Status writes go through ``NoteUpdate`` which keeps ``is_processed``
      and ``ai_error`` consistent with ``ai_status``.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from remen.core.errors import NoteNotFoundError
from remen.models.orm import NoteRecord, TagRecord
from remen.models.schemas import (
    AIStatus,
    EnrichmentOutcome,
    Note,
    NoteCreate,
    NoteUpdate,
    Tag,
    unique_preserving_order,
)
from remen.repositories.store import normalize_tag_name

logger = logging.getLogger(__name__)

# Statuses that startup recovery hands back to the queue
RECOVERABLE_STATUSES = (
    AIStatus.UNPROCESSED,
    AIStatus.QUEUED,
    AIStatus.PROCESSING,
    AIStatus.FAILED,
)


class NoteRepository:
    """
    Note store backed by SQLAlchemy async sessions.

    Args:
        session_factory: Async session maker (see ``core.database``).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _fetch(self, session: AsyncSession, note_id: str) -> NoteRecord | None:
        stmt = (
            select(NoteRecord)
            .where(NoteRecord.id == note_id)
            .execution_options(populate_existing=True)  # Reload tags after writes
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def _fetch_or_raise(self, session: AsyncSession, note_id: str) -> NoteRecord:
        record = await self._fetch(session, note_id)
        if record is None:
            raise NoteNotFoundError(note_id)
        return record

    # -------------------------------------------------------------------------
    # Notes
    # -------------------------------------------------------------------------

    async def create_note(self, note_in: NoteCreate) -> Note:
        data = note_in.model_dump(exclude_none=True)
        async with self._session_factory() as session:
            record = NoteRecord(**data)
            session.add(record)
            await session.commit()
            record = await self._fetch_or_raise(session, record.id)
            logger.info("Note created: %s", record.id)
            return Note.model_validate(record)

    async def get_note_by_id(self, note_id: str) -> Note | None:
        async with self._session_factory() as session:
            record = await self._fetch(session, note_id)
            return Note.model_validate(record) if record else None

    async def get_all_notes(self, skip: int = 0, limit: int | None = None) -> list[Note]:
        stmt = (
            select(NoteRecord)
            .where(NoteRecord.is_deleted.is_(False), NoteRecord.is_archived.is_(False))
            .order_by(NoteRecord.is_pinned.desc(), NoteRecord.created_at.desc())
            .offset(skip)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [Note.model_validate(r) for r in result.scalars().all()]

    async def get_unprocessed_notes(self) -> list[Note]:
        stmt = (
            select(NoteRecord)
            .where(
                NoteRecord.ai_status.in_([s.value for s in RECOVERABLE_STATUSES]),
                NoteRecord.is_deleted.is_(False),
            )
            .order_by(NoteRecord.created_at.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [Note.model_validate(r) for r in result.scalars().all()]

    async def update_note(self, note_id: str, update: NoteUpdate) -> Note:
        update_data = update.model_dump(exclude_unset=True)  # Partial update
        async with self._session_factory() as session:
            record = await self._fetch_or_raise(session, note_id)
            for field, value in update_data.items():
                setattr(record, field, value)
            await session.commit()
            record = await self._fetch_or_raise(session, note_id)
            return Note.model_validate(record)

    async def apply_enrichment(self, note_id: str, outcome: EnrichmentOutcome) -> Note:
        """
        Persist a pipeline outcome in a single transaction.

        Tags are normalized, de-duplicated and created as auto tags when
        missing. Tags already on the note are kept.

        Args:
            note_id: Target note.
            outcome: Result of a completed pipeline run.

        Returns:
            The organized note.
        """
        names = unique_preserving_order(
            n for n in (normalize_tag_name(t) for t in outcome.tags) if n
        )
        async with self._session_factory() as session:
            record = await self._fetch_or_raise(session, note_id)

            existing: dict[str, TagRecord] = {}
            if names:
                result = await session.execute(
                    select(TagRecord).where(TagRecord.name.in_(names))
                )
                existing = {t.name: t for t in result.scalars().all()}

            attached = {t.name for t in record.tags}
            for name in names:
                if name in attached:
                    continue
                tag = existing.get(name)
                if tag is None:
                    tag = TagRecord(name=name, is_auto=True)
                    session.add(tag)
                record.tags.append(tag)
                attached.add(name)

            if outcome.title is not None:
                record.title = outcome.title
            record.type = outcome.type.value
            record.embedding = outcome.embedding
            record.ai_status = AIStatus.ORGANIZED.value
            record.is_processed = True
            record.ai_error = None

            await session.commit()
            record = await self._fetch_or_raise(session, note_id)
            return Note.model_validate(record)

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    async def create_tag(self, name: str, is_auto: bool = True) -> Tag:
        async with self._session_factory() as session:
            tag = TagRecord(name=normalize_tag_name(name), is_auto=is_auto)
            session.add(tag)
            await session.commit()
            return Tag.model_validate(tag)

    async def get_tag_by_name(self, name: str) -> Tag | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TagRecord).where(TagRecord.name == normalize_tag_name(name))
            )
            tag = result.scalars().first()
            return Tag.model_validate(tag) if tag else None

    async def add_tag_to_note(self, note_id: str, tag_id: str) -> None:
        async with self._session_factory() as session:
            record = await self._fetch_or_raise(session, note_id)
            tag = await session.get(TagRecord, tag_id)
            if tag is None:
                raise ValueError(f"Tag {tag_id} not found")
            if all(t.id != tag.id for t in record.tags):
                record.tags.append(tag)
                await session.commit()

    async def get_tags_for_note(self, note_id: str) -> list[Tag]:
        async with self._session_factory() as session:
            record = await self._fetch_or_raise(session, note_id)
            return [Tag.model_validate(t) for t in record.tags]
