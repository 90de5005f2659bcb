"""
Service Container Unit Tests

Startup recovery and background model loading, wired with fakes.
"""

from __future__ import annotations

import asyncio

import pytest
from fakes import FakeEmbeddings, FakeLLM, InMemoryNoteStore, enrichment_replies

from remen.core.config import settings
from remen.core.container import ServiceContainer, build_services
from remen.models.schemas import AIStatus


def _container(
    store: InMemoryNoteStore,
    llm: FakeLLM | None = None,
    embeddings: FakeEmbeddings | None = None,
) -> ServiceContainer:
    return build_services(
        store=store,
        llm=llm or FakeLLM(enrichment_replies('{"type": "idea", "tags": []}', "Garden Idea")),
        embeddings=embeddings or FakeEmbeddings(dimension=settings.EMBEDDING_DIMENSION),
    )


@pytest.mark.asyncio
async def test_load_models_hands_ready_models_to_queue(store: InMemoryNoteStore) -> None:
    llm = FakeLLM(ready=False)
    embeddings = FakeEmbeddings(dimension=settings.EMBEDDING_DIMENSION, ready=False)
    services = _container(store, llm, embeddings)

    assert await services.load_models() is True
    assert services.queue.models_ready is True
    assert (llm.load_calls, embeddings.load_calls) == (1, 1)


@pytest.mark.asyncio
async def test_load_models_reports_unavailable_llm(store: InMemoryNoteStore) -> None:
    llm = FakeLLM(ready=False, loads=False)
    services = _container(store, llm)

    assert await services.load_models() is False
    assert services.queue.models_ready is False


@pytest.mark.asyncio
async def test_start_recovers_and_processes_interrupted_notes(store: InMemoryNoteStore) -> None:
    interrupted = store.seed(
        "What if the garden had a rain barrel for the tomatoes",
        ai_status=AIStatus.PROCESSING,
    )
    services = _container(store)

    await services.start()
    await asyncio.wait_for(services._model_task, timeout=5)
    await asyncio.wait_for(services.queue.wait_until_idle(), timeout=5)

    note = store.notes[interrupted.id]
    assert note.ai_status == AIStatus.ORGANIZED
    assert note.title == "Garden Idea"
    assert len(note.embedding or []) == settings.EMBEDDING_DIMENSION
    await services.stop()


@pytest.mark.asyncio
async def test_model_loader_retries_until_ready(
    store: InMemoryNoteStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "MODEL_LOAD_RETRY_SECONDS", 0.01)
    llm = FakeLLM(ready=False, loads=False)
    note = store.seed("Pending note captured while Ollama was offline")
    services = _container(store, llm)

    await services.start()
    while llm.load_calls < 2:
        await asyncio.sleep(0.01)

    assert services.queue.get_status().pending_queue_length == 1

    llm.loads = True
    await asyncio.wait_for(services._model_task, timeout=5)
    await asyncio.wait_for(services.queue.wait_until_idle(), timeout=5)

    assert store.status_of(note.id) == AIStatus.ORGANIZED
    await services.stop()


@pytest.mark.asyncio
async def test_stop_cancels_model_loader(
    store: InMemoryNoteStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(settings, "MODEL_LOAD_RETRY_SECONDS", 60.0)
    services = _container(store, FakeLLM(ready=False, loads=False))

    await services.start()
    await asyncio.sleep(0)
    await services.stop()

    assert services._model_task is not None
    assert services._model_task.done()
