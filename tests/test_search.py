"""
Tests for chat search over titles and message content.
"""

from unittest.mock import MagicMock

import pytest

from glassist.search import search_chats
from glassist.storage.models import Message
from glassist.storage.sqlite_store import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


def _chat(store, *contents):
    chat_id = store.create_chat()
    roles = ["user", "assistant"]
    store.save_chat(chat_id, [
        Message(role=roles[i % 2], content=c, created_at=f"2024-01-01T00:00:{i:02d}+00:00")
        for i, c in enumerate(contents)
    ])
    return chat_id


def test_empty_query_skips_store():
    store = MagicMock()
    assert search_chats(store, "") == []
    assert search_chats(store, None) == []
    store.find_chats_by_title.assert_not_called()
    store.find_messages_by_content.assert_not_called()


def test_title_and_message_match_reported_once(store):
    """A chat matched by both title and message content appears exactly once."""
    chat_id = _chat(store, "deploy the api", "The deploy finished")
    results = search_chats(store, "deploy")
    assert [r["id"] for r in results] == [chat_id]


def test_title_hit_uses_latest_message(store):
    _chat(store, "kubernetes question", "first answer", "second answer")
    result = search_chats(store, "kubernetes")[0]
    assert result["title"] == "kubernetes question"
    assert result["excerpt"] == "second answer..."


def test_message_hit_uses_matching_message(store):
    chat_id = _chat(store, "hello", "Your README mentions Terraform", "anything else?")
    results = search_chats(store, "terraform")
    assert results == [{
        "id": chat_id,
        "title": "hello",
        "excerpt": "Your README mentions Terraform...",
        "updatedAt": store.get_chat(chat_id).updated_at,
    }]


def test_excerpt_truncated(store):
    _chat(store, "needle " + "y" * 200)
    excerpt = search_chats(store, "needle")[0]["excerpt"]
    assert excerpt == ("needle " + "y" * 200)[:100] + "..."


def test_title_hit_without_messages(store):
    store.create_chat()
    result = search_chats(store, "new chat")[0]
    assert result["title"] == "New Chat"
    assert result["excerpt"] == "No messages"


def test_untitled_chat_fallback(store):
    chat_id = _chat(store, "")
    store.save_chat(chat_id, [Message(role="assistant", content="find me")])
    result = search_chats(store, "find me")[0]
    assert result["title"] == "Untitled Chat"


def test_no_match(store):
    _chat(store, "hello", "hi")
    assert search_chats(store, "gitlab") == []


def test_whitespace_query_is_searched(store):
    chat_id = _chat(store, "two words")
    assert [r["id"] for r in search_chats(store, " ")] == [chat_id]


def test_non_ascii_case_insensitive(store):
    chat_id = _chat(store, "Über projekt École", "Straße geplant")
    assert [r["id"] for r in search_chats(store, "über")] == [chat_id]
    assert [r["id"] for r in search_chats(store, "ÉCOLE")] == [chat_id]
    hits = search_chats(store, "STRASSE")
    assert [r["id"] for r in hits] == [chat_id]
