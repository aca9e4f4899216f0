"""
Base backend abstraction.
The orchestrator only talks to this interface, so any streaming
chat-completions provider can sit behind it.
"""

from __future__ import annotations

import abc
import json
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class BaseBackend(abc.ABC):
    """
    Abstract base for completion backends.
    Each backend knows how to stream a chat completion and report health.
    """

    def __init__(self, name: str, url: str, model: str, timeout: int = 120):
        self.name = name
        self.url = url.rstrip("/")
        self.model = model
        self.timeout = timeout

    @abc.abstractmethod
    def forward_stream(self, body: dict) -> AsyncIterator[str]:
        """
        Forward a streaming chat completion request.
        Yields raw SSE lines (str).
        """
        ...

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Check if this backend is reachable and responsive."""
        ...

    async def stream_completion(self, body: dict) -> AsyncIterator[dict]:
        """
        Stream a completion as parsed chunk dicts.
        Non-data lines and unparseable chunks are skipped; [DONE] ends the stream.
        """
        body = {"model": self.model, **body, "stream": True}
        async for line in self.forward_stream(body):
            if not line.startswith("data:"):
                continue
            data_str = line[5:].strip()
            if data_str == "[DONE]":
                break
            try:
                yield json.loads(data_str)
            except json.JSONDecodeError:
                logger.debug("Backend '%s': skipping bad chunk %r", self.name, data_str[:80])

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r} model={self.model!r}>"
