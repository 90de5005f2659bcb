"""
Main Application Unit Tests

Application startup, health endpoint and the notes/queue API with mocked
infrastructure. Runs without Docker: the database check is mocked and the
service container is built on the in-memory store and fake models.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest
from fakes import FakeEmbeddings, FakeLLM, InMemoryNoteStore, enrichment_replies
from fastapi.testclient import TestClient

from remen.core.config import settings
from remen.core.container import ServiceContainer, build_services
from remen.main import app

CONTENT = "Weekly sync with Sara about the launch plan and the budget"


@pytest.fixture
def services() -> ServiceContainer:
    return build_services(
        store=InMemoryNoteStore(),
        llm=FakeLLM(enrichment_replies('{"type": "meeting", "tags": ["launch"]}', "Launch Sync")),
        embeddings=FakeEmbeddings(dimension=settings.EMBEDDING_DIMENSION),
    )


@pytest.fixture
def client(services: ServiceContainer) -> Generator[TestClient, None, None]:
    """
    TestClient with the lifespan running against the fake container.

    TestClient triggers the lifespan handler, so the DB check is mocked.
    """
    with (
        patch("remen.main.wait_for_db", new_callable=AsyncMock) as mock_db,
        patch("remen.main.build_services", return_value=services),
    ):
        mock_db.return_value = True
        with TestClient(app) as test_client:
            yield test_client


def _wait_for_status(client: TestClient, note_id: str, status: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/v1/notes/{note_id}").json()
        if data["ai_status"] == status:
            return data
        time.sleep(0.02)
    pytest.fail(f"Note {note_id} never reached status {status}")


def test_health_check(client: TestClient) -> None:
    """Verify /health reports model readiness and the queue snapshot."""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "remen"
    assert "environment" in data
    assert set(data["models"]) == {"llm", "embeddings"}
    assert data["queue"]["queue_length"] == 0
    assert data["queue"]["is_processing"] is False


def test_startup_fails_without_database() -> None:
    with patch("remen.main.wait_for_db", new_callable=AsyncMock) as mock_db:
        mock_db.return_value = False
        with pytest.raises(RuntimeError, match="Database connection failed"):
            with TestClient(app):
                pass


class TestNotesApi:
    def test_create_note_is_enriched(self, client: TestClient) -> None:
        response = client.post("/api/v1/notes/", json={"content": CONTENT})

        assert response.status_code == 201
        created = response.json()
        assert created["ai_status"] == "queued"
        assert created["is_processed"] is False

        note = _wait_for_status(client, created["id"], "organized")
        assert note["type"] == "meeting"
        assert note["title"] == "Launch Sync"
        assert "launch" in note["tags"]
        assert note["badge"]["label"] == "Meeting"
        assert note["has_embedding"] is True
        assert note["is_processed"] is True
        assert "embedding" not in note

    def test_user_title_is_kept(self, client: TestClient) -> None:
        response = client.post(
            "/api/v1/notes/",
            json={"content": CONTENT, "title": "Sara 1:1", "type": "voice"},
        )

        note = _wait_for_status(client, response.json()["id"], "organized")
        assert note["title"] == "Sara 1:1"
        assert note["type"] == "voice"

    def test_empty_content_rejected(self, client: TestClient) -> None:
        response = client.post("/api/v1/notes/", json={"content": ""})
        assert response.status_code == 422

    def test_list_notes(self, client: TestClient) -> None:
        first = client.post("/api/v1/notes/", json={"content": "first note content here"}).json()
        second = client.post("/api/v1/notes/", json={"content": "second note content here"}).json()

        response = client.get("/api/v1/notes/", params={"limit": 10})

        assert response.status_code == 200
        ids = [n["id"] for n in response.json()]
        assert set(ids) == {first["id"], second["id"]}

    def test_unknown_note_is_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/notes/missing").status_code == 404
        assert client.post("/api/v1/notes/missing/retry").status_code == 404
        assert client.get("/api/v1/notes/missing/related").status_code == 404

    def test_search_finds_organized_note(self, client: TestClient) -> None:
        created = client.post("/api/v1/notes/", json={"content": CONTENT}).json()
        _wait_for_status(client, created["id"], "organized")

        response = client.post("/api/v1/notes/search", json={"query": "launch plan"})

        assert response.status_code == 200
        data = response.json()
        assert data["results"][0]["id"] == created["id"]
        assert data["temporal_filter"] is None

    def test_retry_organized_note(self, client: TestClient) -> None:
        created = client.post("/api/v1/notes/", json={"content": CONTENT}).json()
        _wait_for_status(client, created["id"], "organized")

        response = client.post(f"/api/v1/notes/{created['id']}/retry")

        assert response.status_code == 200
        assert response.json() == {"note_id": created["id"], "queued": True}
        _wait_for_status(client, created["id"], "organized")

    def test_related_notes(self, client: TestClient) -> None:
        a = client.post("/api/v1/notes/", json={"content": CONTENT}).json()
        b = client.post("/api/v1/notes/", json={"content": CONTENT + " again"}).json()
        _wait_for_status(client, a["id"], "organized")
        _wait_for_status(client, b["id"], "organized")

        response = client.get(f"/api/v1/notes/{a['id']}/related", params={"k": 3})

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == [b["id"]]


class TestTagsApi:
    def test_user_tag_is_created_and_attached(self, client: TestClient) -> None:
        created = client.post("/api/v1/notes/", json={"content": CONTENT}).json()
        _wait_for_status(client, created["id"], "organized")

        response = client.post(f"/api/v1/notes/{created['id']}/tags", json={"name": " Q3 "})

        assert response.status_code == 200
        tags = {t["name"]: t["is_auto"] for t in response.json()}
        assert tags["launch"] is True
        assert tags["q3"] is False
        assert "q3" in client.get(f"/api/v1/notes/{created['id']}").json()["tags"]

    def test_existing_tag_is_reused_case_insensitively(self, client: TestClient) -> None:
        first = client.post("/api/v1/notes/", json={"content": CONTENT}).json()
        # Short enough to skip the LLM, so it gets no "launch" tag of its own
        second = client.post("/api/v1/notes/", json={"content": "Buy groceries"}).json()
        _wait_for_status(client, first["id"], "organized")
        _wait_for_status(client, second["id"], "organized")

        response = client.post(f"/api/v1/notes/{second['id']}/tags", json={"name": "LAUNCH"})

        launch = [t for t in response.json() if t["name"] == "launch"]
        first_tags = client.get(f"/api/v1/notes/{first['id']}/tags").json()
        assert len(launch) == 1
        assert launch[0]["is_auto"] is True
        assert launch[0]["id"] in {t["id"] for t in first_tags}

    def test_adding_a_tag_twice_is_idempotent(self, client: TestClient) -> None:
        created = client.post("/api/v1/notes/", json={"content": CONTENT}).json()
        _wait_for_status(client, created["id"], "organized")

        client.post(f"/api/v1/notes/{created['id']}/tags", json={"name": "travel"})
        response = client.post(f"/api/v1/notes/{created['id']}/tags", json={"name": "Travel"})

        assert [t["name"] for t in response.json()].count("travel") == 1

    def test_blank_tag_rejected(self, client: TestClient) -> None:
        created = client.post("/api/v1/notes/", json={"content": CONTENT}).json()

        response = client.post(f"/api/v1/notes/{created['id']}/tags", json={"name": "   "})

        assert response.status_code == 422

    def test_unknown_note(self, client: TestClient) -> None:
        assert client.get("/api/v1/notes/missing/tags").status_code == 404
        response = client.post("/api/v1/notes/missing/tags", json={"name": "orphan"})
        assert response.status_code == 404


class TestQueueApi:
    def test_status(self, client: TestClient) -> None:
        response = client.get("/api/v1/queue/status")

        assert response.status_code == 200
        assert response.json() == {
            "is_processing": False,
            "queue_length": 0,
            "pending_queue_length": 0,
            "current_job_id": None,
        }

    def test_cancel_idle_queue(self, client: TestClient) -> None:
        response = client.post("/api/v1/queue/cancel")

        assert response.status_code == 200
        assert response.json() == {"cancelled": 0}
