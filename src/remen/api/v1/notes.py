"""
Notes API Router

REST endpoints for capturing notes, following their enrichment and
searching them.

Endpoints:
    POST /                  - Create a note and enqueue it for enrichment.
    GET  /                  - List live notes (pinned first, newest first).
    GET  /{note_id}         - Retrieve one note.
    POST /{note_id}/retry   - Re-enqueue a failed or cancelled note.
    GET  /{note_id}/related - Semantically related notes.
    GET  /{note_id}/tags    - Tags attached to a note.
    POST /{note_id}/tags    - Attach a tag by name (created as a user tag if new).
    POST /search            - Hybrid semantic, temporal and keyword search.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from remen.core.container import ServiceContainer
from remen.core.errors import NoteNotFoundError
from remen.models.schemas import Job, NoteCreate, SearchResponse, SearchResult, Tag
from remen.schemas.notes import EnqueueResponse, NoteResponse, SearchRequest, TagAssign

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency - returns the container built at startup."""
    services: ServiceContainer = request.app.state.services
    return services


def _not_found(e: NoteNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    note_in: NoteCreate,
    services: ServiceContainer = Depends(get_services),
) -> NoteResponse:
    """
    Create a note and hand it to the enrichment queue.

    The response reflects the note right after admission; title, type,
    tags and embedding arrive once the queue has processed it.
    """
    note = await services.store.create_note(note_in)
    await services.queue.add(Job(note_id=note.id, content=note.content))
    refreshed = await services.store.get_note_by_id(note.id)
    return NoteResponse.from_note(refreshed or note)


@router.get("/", response_model=list[NoteResponse])
async def list_notes(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    services: ServiceContainer = Depends(get_services),
) -> list[NoteResponse]:
    notes = await services.store.get_all_notes(skip=skip, limit=limit)
    return [NoteResponse.from_note(n) for n in notes]


@router.post("/search", response_model=SearchResponse)
async def search_notes(
    request: SearchRequest,
    services: ServiceContainer = Depends(get_services),
) -> SearchResponse:
    """
    Hybrid search.

    Question-like queries are interpreted by the LLM when it is ready;
    without models the search falls back to keyword matching.
    """
    return await services.search.query(
        request.query,
        embeddings=services.embeddings,
        llm=services.llm,
    )


@router.get("/{note_id}", response_model=NoteResponse)
async def read_note(
    note_id: str,
    services: ServiceContainer = Depends(get_services),
) -> NoteResponse:
    note = await services.store.get_note_by_id(note_id)
    if note is None:
        raise _not_found(NoteNotFoundError(note_id))
    return NoteResponse.from_note(note)


@router.post("/{note_id}/retry", response_model=EnqueueResponse)
async def retry_note(
    note_id: str,
    services: ServiceContainer = Depends(get_services),
) -> EnqueueResponse:
    try:
        queued = await services.queue.retry(note_id)
    except NoteNotFoundError as e:
        raise _not_found(e) from e
    return EnqueueResponse(note_id=note_id, queued=queued)


@router.get("/{note_id}/related", response_model=list[SearchResult])
async def related_notes(
    note_id: str,
    k: int = Query(5, ge=1, le=20),
    services: ServiceContainer = Depends(get_services),
) -> list[SearchResult]:
    try:
        return await services.search.find_related_notes(
            note_id,
            embeddings=services.embeddings,
            top_k=k,
        )
    except NoteNotFoundError as e:
        raise _not_found(e) from e


@router.get("/{note_id}/tags", response_model=list[Tag])
async def list_note_tags(
    note_id: str,
    services: ServiceContainer = Depends(get_services),
) -> list[Tag]:
    try:
        return await services.store.get_tags_for_note(note_id)
    except NoteNotFoundError as e:
        raise _not_found(e) from e


@router.post("/{note_id}/tags", response_model=list[Tag])
async def add_note_tag(
    note_id: str,
    tag_in: TagAssign,
    services: ServiceContainer = Depends(get_services),
) -> list[Tag]:
    """
    Attach a tag by name, creating it as a user tag when it does not exist.

    Tag names are case-insensitive; an existing AI-assigned tag is reused.
    """
    if await services.store.get_note_by_id(note_id) is None:
        raise _not_found(NoteNotFoundError(note_id))

    tag = await services.store.get_tag_by_name(tag_in.name)
    if tag is None:
        tag = await services.store.create_tag(tag_in.name, is_auto=False)
        logger.info("Tag created by user: %s", tag.name)
    try:
        await services.store.add_tag_to_note(note_id, tag.id)
        return await services.store.get_tags_for_note(note_id)
    except NoteNotFoundError as e:
        raise _not_found(e) from e
