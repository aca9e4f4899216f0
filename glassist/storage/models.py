"""
Data models for chat storage.
These define the shape of data flowing between the API, the orchestrator
and the SQLite store.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

ROLES = ("user", "assistant")

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LEN = 50


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def derive_title(content: str) -> str:
    """First user message, cut to 50 chars with an ellipsis marker."""
    if len(content) > TITLE_MAX_LEN:
        return content[:TITLE_MAX_LEN] + "..."
    return content


@dataclass
class ToolCall:
    """One tool invocation recorded on an assistant message."""
    name: str
    input: dict = field(default_factory=dict)
    output: str | None = None
    id: str = field(default_factory=lambda: f"call_{uuid4().hex[:24]}")
    is_error: bool = False

    def to_dict(self) -> dict:
        d = {"id": self.id, "name": self.name, "input": self.input, "output": self.output}
        if self.is_error:
            d["isError"] = True
        return d

    @classmethod
    def from_dict(cls, data: dict) -> ToolCall:
        kwargs = {
            "name": data.get("name", ""),
            "input": data.get("input") or {},
            "output": data.get("output"),
            "is_error": bool(data.get("isError", data.get("is_error", False))),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


@dataclass
class Message:
    """A single message in a chat."""
    id: str = field(default_factory=lambda: uuid4().hex)
    chat_id: str = ""
    role: str = ""           # "user" or "assistant"
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: dict | None = None
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        """Wire shape used by the HTTP API."""
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls],
            "metadata": self.metadata,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict, chat_id: str = "") -> Message:
        """
        Build a Message from the wire shape. Unknown keys are ignored;
        the shape itself is checked later by the orchestrator.
        """
        raw_calls = data.get("toolCalls", data.get("tool_calls")) or []
        kwargs = {
            "chat_id": chat_id,
            "role": data.get("role", ""),
            "content": data.get("content", ""),
            "tool_calls": [
                ToolCall.from_dict(tc) if isinstance(tc, dict) else tc
                for tc in raw_calls
            ],
            "metadata": data.get("metadata"),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        created = data.get("createdAt", data.get("created_at"))
        if created:
            kwargs["created_at"] = created
        return cls(**kwargs)


@dataclass
class Chat:
    """A chat is a titled, ordered list of messages."""
    id: str = field(default_factory=lambda: uuid4().hex)
    title: str = DEFAULT_TITLE
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    message_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messageCount": self.message_count,
        }
