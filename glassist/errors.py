"""
Exception types shared across glassist.

Remote API failures are deliberately absent: GitLab calls report those
through GitLabResponse and tools turn them into text.
"""


class GlassistError(Exception):
    """Base class for glassist errors."""


class ChatNotFoundError(GlassistError, LookupError):
    """Raised when a chat id is not present in the store."""

    def __init__(self, chat_id: str):
        super().__init__(f"Chat not found: {chat_id}")
        self.chat_id = chat_id


class GitLabConfigError(GlassistError):
    """GitLab credential (or other required setting) is missing."""


class HistoryValidationError(GlassistError, ValueError):
    """A message sequence does not match the current tool schemas."""
