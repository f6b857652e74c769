"""Tests for the HTTP surface."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from hearth.dialogue import DialogueOrchestrator, FixedStyleHint
from hearth.dialogue.prompt import FALLBACK_REPLY
from hearth.errors import StoreUnavailable
from hearth.memory import MemoryManager
from hearth.relay import SSEParser
from hearth.server import create_app
from hearth.store import InMemoryStateStore

USER = "user-123"


class BrokenStore(InMemoryStateStore):
    async def get_versioned(self, key):
        raise StoreUnavailable("connection refused")


@pytest.fixture
def provider(stub_provider):
    return stub_provider(reply="Glad you're here.")


@pytest.fixture
def orchestrator(memory_manager, provider):
    return DialogueOrchestrator(memory_manager, provider, hints=FixedStyleHint())


@pytest.fixture
def client(orchestrator):
    with TestClient(create_app(orchestrator)) as client:
        yield client


@pytest.fixture
def broken_client(clock, provider):
    orchestrator = DialogueOrchestrator(
        MemoryManager(BrokenStore(), clock=clock), provider, hints=FixedStyleHint()
    )
    with TestClient(create_app(orchestrator)) as client:
        yield client


def stream_text(body: str) -> str:
    events = SSEParser().feed(body.encode("utf-8"))
    return "".join(e.data for e in events if not e.is_done)


class TestChatEndpoint:
    """Tests for POST /api/chat and the health check."""

    def test_health(self, client):
        assert client.get("/api/health").json() == {"ok": True}

    def test_say(self, client):
        """A say returns ok with the reply and identity."""
        response = client.post("/api/chat", json={"action": "say", "userId": USER, "message": "hi"})

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["reply"] == "Glad you're here."
        assert body["identity"]["name"] is None
        assert "error" not in body

    def test_denied_nudge_is_empty_success(self, client):
        """A denied nudge is a 200 with an empty reply."""
        client.post("/api/chat", json={"action": "say", "userId": USER, "message": "hi"})

        response = client.post("/api/chat", json={"action": "nudge", "userId": USER})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "reply": ""}

    def test_invalid_json(self, client):
        """A body that isn't JSON is a 400."""
        response = client.post(
            "/api/chat", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json() == {"ok": False, "reply": "", "error": "Invalid JSON body."}

    @pytest.mark.parametrize(
        "body",
        [
            {"action": "say", "userId": USER},
            {"action": "say", "userId": "abc", "message": "hi"},
            {"action": "fly", "userId": USER},
        ],
    )
    def test_invalid_request(self, client, body):
        """Validation failures are a 400 with an error message."""
        response = client.post("/api/chat", json=body)

        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert response.json()["error"]

    def test_store_unavailable(self, broken_client):
        """A store outage is a 503 carrying the fallback reply."""
        response = broken_client.post("/api/chat", json={"action": "init", "userId": USER})

        assert response.status_code == 503
        assert response.json() == {
            "ok": False,
            "reply": FALLBACK_REPLY,
            "error": "state store unavailable",
        }


class TestStreamEndpoint:
    """Tests for POST /api/chat/stream."""

    def test_streams_reply(self, client, memory_manager):
        """The reply arrives as SSE with no-cache headers and a done event."""
        response = client.post(
            "/api/chat/stream", json={"userId": USER, "message": "hi", "requestId": "req-1"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert stream_text(response.text) == "Glad you're here."
        assert response.text.endswith("event: done\ndata: [DONE]\n\n")

    def test_stream_persists_both_turns(self, client, memory_manager):
        """A streamed turn stores the user and assistant lines."""
        client.post("/api/chat/stream", json={"userId": USER, "message": "hi", "requestId": "req-1"})
        after = client.post("/api/chat", json={"action": "add_fact", "userId": USER, "fact": "x y"})

        assert after.json()["memory"]["threadLength"] == 2

    def test_stream_invalid_body(self, client):
        response = client.post("/api/chat/stream", json={"userId": USER})
        assert response.status_code == 400

    def test_stream_store_unavailable(self, broken_client):
        """A store outage is answered before the stream opens."""
        response = broken_client.post("/api/chat/stream", json={"userId": USER, "message": "hi"})

        assert response.status_code == 503
        assert response.json()["reply"] == FALLBACK_REPLY


def test_shutdown_drains_orchestrator(orchestrator):
    """Shutting the app down closes the orchestrator."""
    orchestrator.aclose = AsyncMock()

    with TestClient(create_app(orchestrator)):
        pass

    orchestrator.aclose.assert_awaited_once()
