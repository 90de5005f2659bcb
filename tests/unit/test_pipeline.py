"""
Processing Pipeline Unit Tests

Stage-by-stage behaviour of NoteProcessingPipeline: classification,
title generation, embedding validation, persistence and cancellation.
"""

from __future__ import annotations

import math

import pytest
from fakes import FakeEmbeddings, FakeLLM, InMemoryNoteStore, enrichment_replies

from remen.core.errors import InferenceError, JobCancelled, NoteNotFoundError
from remen.models.schemas import AIStatus, Job, NoteType
from remen.services.pipeline import CancellationToken, NoteProcessingPipeline, PipelineModels
from remen.services.prompts import CLASSIFY_SYSTEM

MEETING_NOTES = "Weekly sync with Sara and Tom. Discussed the launch plan and budget."


@pytest.fixture
def models(llm: FakeLLM, embeddings: FakeEmbeddings) -> PipelineModels:
    return PipelineModels(llm=llm, embeddings=embeddings)


async def _run(
    pipeline: NoteProcessingPipeline,
    store: InMemoryNoteStore,
    models: PipelineModels,
    content: str,
    **fields: object,
):
    note = store.seed(content, **fields)
    outcome = await pipeline.run(Job(note_id=note.id, content=content), models, CancellationToken())
    return outcome, store.notes[note.id]


class TestShortContent:
    @pytest.mark.asyncio
    async def test_short_note_is_organized_without_llm(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
        embeddings: FakeEmbeddings,
    ) -> None:
        outcome, note = await _run(pipeline, store, models, "Buy milk and eggs")

        assert llm.calls == []
        assert embeddings.calls == ["Buy milk and eggs"]
        assert note.ai_status == AIStatus.ORGANIZED
        assert note.is_processed is True
        assert note.type in set(NoteType)
        assert note.title == "Buy milk and eggs"
        assert note.embedding == outcome.embedding
        assert len(note.embedding) == embeddings.dimension

    @pytest.mark.asyncio
    async def test_short_note_gets_type_prefix(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
    ) -> None:
        _, note = await _run(pipeline, store, models, "todo: call dentist")

        assert note.type == NoteType.TASK
        assert note.title == "Task: todo: call dentist"


class TestClassification:
    @pytest.mark.asyncio
    async def test_llm_type_and_tags_are_applied(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = enrichment_replies(
            '```json\n{"type": "meeting", "tags": ["Launch", "#budget", "launch"]}\n```',
            "Launch Plan Sync",
        )

        outcome, note = await _run(pipeline, store, models, MEETING_NOTES)

        assert note.type == NoteType.MEETING
        assert note.title == "Launch Plan Sync"
        assert note.tag_names[:2] == ["launch", "budget"]
        assert len(note.tag_names) == len(set(note.tag_names))
        assert outcome.tags[:2] == ("launch", "budget")
        assert llm.calls[0][0]["content"] == CLASSIFY_SYSTEM

    @pytest.mark.asyncio
    async def test_malformed_reply_falls_back_to_default(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = enrichment_replies("I think this is probably {not json", "Some Title")

        _, note = await _run(pipeline, store, models, MEETING_NOTES)

        assert note.type == NoteType.NOTE
        assert note.ai_status == AIStatus.ORGANIZED

    @pytest.mark.asyncio
    async def test_bare_category_word_is_accepted(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = enrichment_replies("Category: idea", "An Idea")

        _, note = await _run(pipeline, store, models, MEETING_NOTES)

        assert note.type == NoteType.IDEA

    @pytest.mark.asyncio
    @pytest.mark.parametrize("capture_type", [NoteType.VOICE, NoteType.SCAN])
    async def test_capture_type_is_kept(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
        capture_type: NoteType,
    ) -> None:
        llm.reply = enrichment_replies('{"type": "meeting", "tags": []}', "Launch Sync")

        _, note = await _run(pipeline, store, models, MEETING_NOTES, type=capture_type)

        assert note.type == capture_type

    @pytest.mark.asyncio
    async def test_existing_tags_are_kept(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = enrichment_replies('{"type": "meeting", "tags": ["launch"]}', "Launch Sync")

        _, note = await _run(pipeline, store, models, MEETING_NOTES, tags=["manual"])

        assert note.tag_names[0] == "manual"
        assert "launch" in note.tag_names


class TestTitles:
    @pytest.mark.asyncio
    async def test_user_title_is_never_overwritten(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        outcome, note = await _run(pipeline, store, models, MEETING_NOTES, title="My Title")

        assert note.title == "My Title"
        assert outcome.title is None
        # Only the classification prompt was sent
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_quoted_title_is_cleaned(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = enrichment_replies('{"type": "meeting"}', 'Title: "Launch Budget Sync"\nextra')

        _, note = await _run(pipeline, store, models, MEETING_NOTES)

        assert note.title == "Launch Budget Sync"

    @pytest.mark.asyncio
    async def test_unusable_title_falls_back_to_rules(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = enrichment_replies('{"type": "meeting"}', '""')
        content = "Meeting with design team\nWe reviewed the onboarding flow."

        _, note = await _run(pipeline, store, models, content)

        assert note.title == "Meeting with design team"


class TestEmbedding:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "vector",
        [[], [0.1, math.nan, 0.3], [0.1, math.inf]],
        ids=["empty", "nan", "inf"],
    )
    async def test_invalid_vector_fails_without_writing(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        embeddings: FakeEmbeddings,
        vector: list[float],
    ) -> None:
        embeddings.vectors[MEETING_NOTES] = vector
        note = store.seed(MEETING_NOTES)

        with pytest.raises(InferenceError):
            await pipeline.run(Job(note_id=note.id, content=MEETING_NOTES), models, CancellationToken())

        assert store.enriched == []
        assert store.notes[note.id].ai_status == AIStatus.UNPROCESSED

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_rejected(
        self,
        store: InMemoryNoteStore,
        models: PipelineModels,
    ) -> None:
        pipeline = NoteProcessingPipeline(store, timeout=2.0, dimension=384)
        note = store.seed(MEETING_NOTES)

        with pytest.raises(InferenceError, match="dimension 8"):
            await pipeline.run(Job(note_id=note.id, content=MEETING_NOTES), models, CancellationToken())

        assert store.enriched == []

    @pytest.mark.asyncio
    async def test_embedding_uses_enqueued_content(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        embeddings: FakeEmbeddings,
    ) -> None:
        note = store.seed("edited later")
        job = Job(note_id=note.id, content=MEETING_NOTES)

        await pipeline.run(job, models, CancellationToken())

        assert embeddings.calls == [MEETING_NOTES]


class TestCancellationAndErrors:
    @pytest.mark.asyncio
    async def test_cancelled_token_stops_before_any_work(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        note = store.seed(MEETING_NOTES)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(JobCancelled):
            await pipeline.run(Job(note_id=note.id, content=MEETING_NOTES), models, token)

        assert llm.calls == []
        assert store.enriched == []

    @pytest.mark.asyncio
    async def test_cancellation_between_stages(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
        embeddings: FakeEmbeddings,
    ) -> None:
        note = store.seed(MEETING_NOTES)
        token = CancellationToken()

        def cancel_on_classify(messages):
            token.cancel()
            return '{"type": "meeting", "tags": []}'

        llm.reply = cancel_on_classify

        with pytest.raises(JobCancelled):
            await pipeline.run(Job(note_id=note.id, content=MEETING_NOTES), models, token)

        assert len(llm.calls) == 1
        assert embeddings.calls == []
        assert store.enriched == []

    @pytest.mark.asyncio
    async def test_missing_note(
        self,
        pipeline: NoteProcessingPipeline,
        models: PipelineModels,
    ) -> None:
        with pytest.raises(NoteNotFoundError):
            await pipeline.run(Job(note_id="gone", content=MEETING_NOTES), models, CancellationToken())

    @pytest.mark.asyncio
    async def test_llm_failure_propagates(
        self,
        pipeline: NoteProcessingPipeline,
        store: InMemoryNoteStore,
        models: PipelineModels,
        llm: FakeLLM,
    ) -> None:
        llm.reply = InferenceError("Ollama API error: 500")
        note = store.seed(MEETING_NOTES)

        with pytest.raises(InferenceError, match="500"):
            await pipeline.run(Job(note_id=note.id, content=MEETING_NOTES), models, CancellationToken())
