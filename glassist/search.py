"""
Chat search: case-insensitive substring match over titles and message content.
Title hits come first; a chat found both ways is reported once.
"""

import logging

from glassist.storage.models import Message
from glassist.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Chat"
NO_MESSAGES = "No messages"


def _excerpt(message: Message | None, length: int) -> str:
    if message is None:
        return NO_MESSAGES
    return message.content[:length] + "..."


def search_chats(store: SQLiteStore, query: str, limit: int = 10, excerpt_length: int = 100) -> list[dict]:
    """
    Return [{id, title, excerpt, updatedAt}] for chats whose title or any
    message contains the query. Only an empty query skips the lookup;
    whitespace is searched like any other text.
    """
    if not query:
        return []

    results: list[dict] = []
    seen: set[str] = set()

    for chat in store.find_chats_by_title(query, limit=limit):
        if chat.id in seen:
            continue
        seen.add(chat.id)
        results.append({
            "id": chat.id,
            "title": chat.title or UNTITLED,
            "excerpt": _excerpt(store.latest_message(chat.id), excerpt_length),
            "updatedAt": chat.updated_at,
        })

    # Newest matches first, so the first hit per chat is its latest matching message.
    for message, chat in store.find_messages_by_content(query, limit=limit):
        if chat.id in seen:
            continue
        seen.add(chat.id)
        results.append({
            "id": chat.id,
            "title": chat.title or UNTITLED,
            "excerpt": _excerpt(message, excerpt_length),
            "updatedAt": chat.updated_at,
        })

    logger.debug("Search %r: %d result(s)", query, len(results))
    return results
