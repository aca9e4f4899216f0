"""
Tests for the HTTP API.
Dependencies are injected through create_app(); the lifespan is not run.
"""

import json
import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from glassist import __version__
from glassist.backends.base import BaseBackend
from glassist.gitlab.client import GitLabClient, GitLabResponse
from glassist.main import create_app
from glassist.storage.models import Message
from glassist.storage.sqlite_store import SQLiteStore
from glassist.tools.registry import ToolRegistry


class EchoBackend(BaseBackend):
    """Answers every completion with a fixed reply."""

    def __init__(self, reply="Hello from the model."):
        super().__init__("echo", "http://fake", "echo-model")
        self.reply = reply

    async def forward_stream(self, body):
        yield f"data: {json.dumps({'choices': [{'delta': {'content': self.reply}}]})}"
        yield "data: [DONE]"

    async def health_check(self):
        return True


def _events(response):
    lines = [l[len("data: "):] for l in response.text.split("\n") if l.startswith("data: ")]
    assert lines[-1] == "[DONE]"
    return [json.loads(l) for l in lines[:-1]]


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "api.db"))


@pytest.fixture
def registry():
    client = MagicMock(spec=GitLabClient)
    client.list_projects = AsyncMock(return_value=GitLabResponse(ok=True, data=[]))
    return ToolRegistry(client)


@pytest.fixture
def client(store, registry):
    app = create_app(store=store, registry=registry, backend=EchoBackend())
    return TestClient(app)


def _seed(store, n):
    ids = []
    for i in range(n):
        chat_id = store.create_chat()
        store.save_chat(chat_id, [Message(role="user", content=f"chat number {i}")])
        ids.append(chat_id)
    return ids


# ---------------------------------------------------------------------------
# POST /api/chat
# ---------------------------------------------------------------------------

class TestChatTurn:
    def test_new_chat_streams_and_persists(self, client, store):
        resp = client.post("/api/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        chat_id = resp.headers["x-chat-id"]

        events = _events(resp)
        assert [e["type"] for e in events] == ["start", "text-delta", "finish-step", "finish"]
        assert events[0]["chatId"] == chat_id
        assert events[-1]["messages"][-1]["content"] == "Hello from the model."

        stored = store.load_chat(chat_id)
        assert [m.content for m in stored] == ["hi", "Hello from the model."]

    def test_existing_chat_continues(self, client, store):
        chat_id = _seed(store, 1)[0]
        resp = client.post("/api/chat", json={
            "chatId": chat_id,
            "messages": [{"id": "m-2", "role": "user", "content": "more"}],
        })

        assert resp.headers["x-chat-id"] == chat_id
        assert len(store.load_chat(chat_id)) == 3
        assert any(m.id == "m-2" for m in store.load_chat(chat_id))

    def test_invalid_json(self, client):
        resp = client.post("/api/chat", content=b"{nope", headers={"content-type": "application/json"})
        assert resp.status_code == 400

    @pytest.mark.parametrize("body", [
        {},
        {"messages": []},
        {"messages": "hello"},
        {"messages": ["hello"]},
        {"chatId": 5, "messages": [{"role": "user", "content": "x"}]},
    ])
    def test_malformed_body(self, client, body):
        assert client.post("/api/chat", json=body).status_code == 400

    def test_chat_creation_failure(self, client, store):
        with patch.object(store, "create_chat", side_effect=sqlite3.OperationalError("locked")):
            resp = client.post("/api/chat", json={"messages": [{"role": "user", "content": "x"}]})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to create chat"}

    def test_invalid_role_streams_error(self, client):
        resp = client.post("/api/chat", json={"messages": [{"role": "wizard", "content": "x"}]})
        assert resp.status_code == 200
        assert [e["type"] for e in _events(resp)] == ["error"]


# ---------------------------------------------------------------------------
# GET /api/chat
# ---------------------------------------------------------------------------

class TestGetChat:
    def test_requires_chat_id(self, client):
        assert client.get("/api/chat").status_code == 400

    def test_unknown_chat(self, client):
        assert client.get("/api/chat", params={"chatId": "missing"}).status_code == 404

    def test_unreadable_history(self, client, store):
        chat_id = _seed(store, 1)[0]
        with sqlite3.connect(str(store.db_path)) as conn:
            conn.execute("UPDATE messages SET tool_calls = ? WHERE chat_id = ?", ("{broken", chat_id))
        resp = client.get("/api/chat", params={"chatId": chat_id})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Chat history is unreadable"}

    def test_returns_messages(self, client, store):
        chat_id = _seed(store, 1)[0]
        resp = client.get("/api/chat", params={"chatId": chat_id})
        assert resp.status_code == 200
        messages = resp.json()["messages"]
        assert messages[0]["content"] == "chat number 0"
        assert messages[0]["toolCalls"] == []


# ---------------------------------------------------------------------------
# /api/chats
# ---------------------------------------------------------------------------

class TestChats:
    def test_pagination(self, client, store):
        _seed(store, 5)

        first = client.get("/api/chats", params={"page": 1, "limit": 2}).json()
        assert len(first["chats"]) == 2
        assert first["pagination"] == {"page": 1, "limit": 2, "total": 5, "hasMore": True}

        last = client.get("/api/chats", params={"page": 3, "limit": 2}).json()
        assert len(last["chats"]) == 1
        assert last["pagination"]["hasMore"] is False

    def test_pages_cover_every_chat_once(self, client, store):
        ids = _seed(store, 5)
        seen = []
        for page in (1, 2, 3):
            seen += [c["id"] for c in client.get("/api/chats", params={"page": page, "limit": 2}).json()["chats"]]
        assert sorted(seen) == sorted(ids)

    def test_defaults(self, client):
        data = client.get("/api/chats").json()
        assert data["chats"] == []
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 0, "hasMore": False}

    def test_delete(self, client, store):
        chat_id = _seed(store, 1)[0]
        resp = client.delete(f"/api/chats/{chat_id}")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert client.get("/api/chat", params={"chatId": chat_id}).status_code == 404

    def test_delete_unknown(self, client):
        assert client.delete("/api/chats/missing").status_code == 404


# ---------------------------------------------------------------------------
# Search / tools / health
# ---------------------------------------------------------------------------

def test_search(client, store):
    _seed(store, 3)
    data = client.get("/api/search", params={"q": "NUMBER 1"}).json()
    assert [r["title"] for r in data["results"]] == ["chat number 1"]


def test_search_empty_query(client):
    assert client.get("/api/search").json()["results"] == []


def test_tools(client):
    tools = client.get("/api/tools").json()["tools"]
    names = {t["name"] for t in tools}
    assert "createReadme" in names
    assert len(tools) == 9


def test_health(client):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["version"] == __version__
    assert data["model"] == "echo-model"
    assert data["backend"] == "reachable"


def test_health_reports_unreachable_backend(store, registry):
    backend = EchoBackend()
    backend.health_check = AsyncMock(return_value=False)
    client = TestClient(create_app(store=store, registry=registry, backend=backend))
    assert client.get("/health").json()["backend"] == "unreachable"
    backend.health_check.assert_awaited_once()
