"""
Pytest Configuration and Fixtures

Shared fixtures for the unit suite. Everything runs in-process against
an in-memory note store and fake model handles: no database, no Ollama,
no model download.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults - MUST be before any remen imports.
#
# 1. Load .env first so that local credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file) so that pydantic Settings validation doesn't crash.
# ---------------------------------------------------------------------------
load_dotenv()  # .env -> os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "remen",
    "POSTGRES_PASSWORD": "remen_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "remen_db",
    "LOG_LEVEL": "DEBUG",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from remen.services.pipeline import NoteProcessingPipeline  # noqa: E402
from remen.services.queue import AIQueue  # noqa: E402
from fakes import FakeEmbeddings, FakeLLM, InMemoryNoteStore  # noqa: E402

# Wednesday 2026-03-18 15:00 in a fixed UTC+1 zone
NOW = datetime(2026, 3, 18, 15, 0, tzinfo=timezone(timedelta(hours=1)))


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.fixture
def llm() -> FakeLLM:
    """Ready LLM answering every prompt with a generic classification."""
    return FakeLLM('{"type": "note", "tags": []}')


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings(dimension=8)


@pytest.fixture
def pipeline(store: InMemoryNoteStore) -> NoteProcessingPipeline:
    return NoteProcessingPipeline(store, timeout=2.0)


@pytest.fixture
def queue(store: InMemoryNoteStore, pipeline: NoteProcessingPipeline) -> AIQueue:
    return AIQueue(store, pipeline)
