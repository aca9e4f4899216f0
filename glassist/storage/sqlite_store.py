"""
SQLite storage for chats and their messages.
This is the source of truth for every transcript the assistant produces.
Single portable file. Query with SQL. Export to JSON.
"""

import sqlite3
import json
import logging
from pathlib import Path
from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import uuid4

from glassist.errors import ChatNotFoundError, HistoryValidationError
from glassist.storage.models import Chat, Message, ToolCall, DEFAULT_TITLE, derive_title

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS chats (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL DEFAULT 'New Chat',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    tool_calls TEXT DEFAULT NULL,
    metadata TEXT DEFAULT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (chat_id) REFERENCES chats(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_chat
    ON messages(chat_id);
CREATE INDEX IF NOT EXISTS idx_messages_created
    ON messages(created_at);
CREATE INDEX IF NOT EXISTS idx_chats_updated
    ON chats(updated_at);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _casefold(value):
    return value.casefold() if value else value


def _like_pattern(query: str) -> str:
    escaped = query.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_to_message(row: sqlite3.Row) -> Message:
    """Decode one stored row. Raises HistoryValidationError when the JSON columns have drifted."""
    try:
        raw_calls = json.loads(row["tool_calls"]) if row["tool_calls"] else []
        metadata = json.loads(row["metadata"]) if row["metadata"] else None
    except json.JSONDecodeError as e:
        raise HistoryValidationError(f"message {row['id']}: undecodable JSON column: {e}") from e
    if not isinstance(raw_calls, list) or not all(isinstance(tc, dict) for tc in raw_calls):
        raise HistoryValidationError(f"message {row['id']}: tool_calls is not a list of objects")
    if metadata is not None and not isinstance(metadata, dict):
        raise HistoryValidationError(f"message {row['id']}: metadata is not an object")
    tool_calls = [ToolCall.from_dict(tc) for tc in raw_calls]
    return Message(
        id=row["id"],
        chat_id=row["chat_id"],
        role=row["role"],
        content=row["content"],
        tool_calls=tool_calls,
        metadata=metadata,
        created_at=row["created_at"],
    )


def _row_to_chat(row: sqlite3.Row) -> Chat:
    keys = row.keys()
    return Chat(
        id=row["id"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        message_count=row["message_count"] if "message_count" in keys else 0,
    )


class SQLiteStore:
    """SQLite chat store. One connection per operation."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        # SQLite LOWER() only folds ASCII
        conn.create_function("py_casefold", 1, _casefold, deterministic=True)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ─ Chats ──────────────────────────────────────────────────────────────

    def create_chat(self) -> str:
        """Insert an empty chat with the placeholder title and return its id."""
        chat_id = uuid4().hex
        now = _now()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO chats (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (chat_id, DEFAULT_TITLE, now, now),
            )
        logger.debug("Created chat %s", chat_id)
        return chat_id

    def ensure_chat(self, chat_id: str):
        """Create chat record if it doesn't exist."""
        now = _now()
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO chats (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (chat_id, DEFAULT_TITLE, now, now),
            )

    def get_chat(self, chat_id: str) -> Chat:
        with self._connect() as conn:
            row = conn.execute(
                """SELECT c.*,
                          (SELECT COUNT(*) FROM messages m WHERE m.chat_id = c.id) as message_count
                   FROM chats c WHERE c.id = ?""",
                (chat_id,),
            ).fetchone()
        if row is None:
            raise ChatNotFoundError(chat_id)
        return _row_to_chat(row)

    def load_chat(self, chat_id: str) -> list[Message]:
        """
        Retrieve all messages for a chat, oldest first.
        Raises ChatNotFoundError if the chat does not exist.
        """
        with self._connect() as conn:
            exists = conn.execute("SELECT 1 FROM chats WHERE id = ?", (chat_id,)).fetchone()
            if exists is None:
                raise ChatNotFoundError(chat_id)
            rows = conn.execute(
                "SELECT * FROM messages WHERE chat_id = ? ORDER BY created_at, rowid",
                (chat_id,),
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    def save_chat(self, chat_id: str, messages: list[Message]):
        """
        Persist a transcript. Re-titles the chat from its first user message,
        then upserts every message by id. Each write is its own transaction,
        so a crash part way through leaves a partial save.
        """
        self.ensure_chat(chat_id)

        first_user = next((m for m in messages if m.role == "user"), None)
        with self._connect() as conn:
            if first_user is not None:
                conn.execute(
                    "UPDATE chats SET title = ?, updated_at = ? WHERE id = ?",
                    (derive_title(first_user.content), _now(), chat_id),
                )
            else:
                conn.execute("UPDATE chats SET updated_at = ? WHERE id = ?", (_now(), chat_id))

        for msg in messages:
            self.upsert_message(chat_id, msg)
        logger.debug("Saved %d messages to chat %s", len(messages), chat_id)

    def upsert_message(self, chat_id: str, msg: Message):
        """Insert a message, or update content/tool calls/metadata if the id exists."""
        tool_calls = json.dumps([tc.to_dict() for tc in msg.tool_calls]) if msg.tool_calls else None
        metadata = json.dumps(msg.metadata) if msg.metadata is not None else None
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO messages
                   (id, chat_id, role, content, tool_calls, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       content = excluded.content,
                       tool_calls = excluded.tool_calls,
                       metadata = excluded.metadata""",
                (msg.id, chat_id, msg.role, msg.content, tool_calls, metadata, msg.created_at),
            )

    def list_chats(self, limit: int = 20, offset: int = 0) -> dict:
        """Page of chats, most recently updated first, plus the total count."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT c.*,
                          (SELECT COUNT(*) FROM messages m
                           WHERE m.chat_id = c.id) as message_count
                   FROM chats c
                   ORDER BY c.updated_at DESC, c.rowid DESC
                   LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
            total = conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0]
        return {"chats": [_row_to_chat(r) for r in rows], "total": total}

    def delete_chat(self, chat_id: str):
        """Remove a chat; its messages go with it (ON DELETE CASCADE)."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
            if cur.rowcount == 0:
                raise ChatNotFoundError(chat_id)
        logger.info("Deleted chat %s", chat_id)

    # ─ Search helpers ─────────────────────────────────────────────────────

    def find_chats_by_title(self, query: str, limit: int = 10) -> list[Chat]:
        """Case-insensitive substring match on chat titles."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT * FROM chats
                   WHERE py_casefold(title) LIKE ? ESCAPE '\\'
                   ORDER BY updated_at DESC
                   LIMIT ?""",
                (_like_pattern(query), limit),
            ).fetchall()
        return [_row_to_chat(r) for r in rows]

    def find_messages_by_content(self, query: str, limit: int = 10) -> list[tuple[Message, Chat]]:
        """Case-insensitive substring match on message content, joined to the owning chat."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT m.*,
                          c.title AS chat_title,
                          c.created_at AS chat_created_at,
                          c.updated_at AS chat_updated_at
                   FROM messages m
                   JOIN chats c ON c.id = m.chat_id
                   WHERE py_casefold(m.content) LIKE ? ESCAPE '\\'
                   ORDER BY m.created_at DESC
                   LIMIT ?""",
                (_like_pattern(query), limit),
            ).fetchall()
        return [
            (
                _row_to_message(r),
                Chat(
                    id=r["chat_id"],
                    title=r["chat_title"],
                    created_at=r["chat_created_at"],
                    updated_at=r["chat_updated_at"],
                ),
            )
            for r in rows
        ]

    def latest_message(self, chat_id: str) -> Message | None:
        with self._connect() as conn:
            row = conn.execute(
                """SELECT * FROM messages WHERE chat_id = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT 1""",
                (chat_id,),
            ).fetchone()
        return _row_to_message(row) if row else None

    # ─ Stats / export ─────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Return counts of stored chats, messages and recorded tool calls."""
        with self._connect() as conn:
            chat_count = conn.execute("SELECT COUNT(*) FROM chats").fetchone()[0]
            msg_count = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            user_count = conn.execute("SELECT COUNT(*) FROM messages WHERE role='user'").fetchone()[0]
            asst_count = conn.execute("SELECT COUNT(*) FROM messages WHERE role='assistant'").fetchone()[0]
            call_rows = conn.execute(
                "SELECT tool_calls FROM messages WHERE tool_calls IS NOT NULL"
            ).fetchall()

        tools: dict[str, int] = {}
        for row in call_rows:
            for tc in json.loads(row["tool_calls"]):
                name = tc.get("name", "")
                tools[name] = tools.get(name, 0) + 1

        return {
            "chats": chat_count,
            "messages": msg_count,
            "user_messages": user_count,
            "assistant_messages": asst_count,
            "tool_calls": sum(tools.values()),
            "tools": tools,
        }

    def export_all_json(self) -> list[dict]:
        """Export every chat with its full transcript."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM chats ORDER BY created_at"
            ).fetchall()

        result = []
        for row in rows:
            chat = _row_to_chat(row)
            result.append({
                "chat_id": chat.id,
                "title": chat.title,
                "created_at": chat.created_at,
                "updated_at": chat.updated_at,
                "messages": [m.to_dict() for m in self.load_chat(chat.id)],
            })
        return result
