"""
Generic OpenAI-compatible backend.

Supports any endpoint that speaks the OpenAI chat completions API with
function calling, e.g.:
- Cerebras (default)
- OpenAI / OpenRouter
- vLLM, llama.cpp server, Ollama

The configured url is the API root including its version segment
(https://api.cerebras.ai/v1), so requests go to {url}/chat/completions.
"""

from __future__ import annotations

import logging

import httpx

from glassist.backends.base import BaseBackend
from glassist.config import get_config

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(BaseBackend):
    """
    Generic backend for OpenAI-compatible endpoints.

    Works with any service that implements /chat/completions and /models.
    """

    def __init__(
        self,
        name: str,
        url: str,
        model: str,
        timeout: int = 120,
        api_key: str = "",
    ):
        super().__init__(name, url, model, timeout)
        self.api_key = api_key

    @classmethod
    def from_config(cls) -> OpenAICompatibleBackend:
        llm_cfg = get_config().get("llm", {})
        return cls(
            name="llm",
            url=llm_cfg.get("url", "https://api.cerebras.ai/v1"),
            model=llm_cfg.get("model", "gpt-oss-120b"),
            timeout=llm_cfg.get("timeout", 120),
            api_key=llm_cfg.get("api_key", ""),
        )

    def _headers(self) -> dict:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def forward_stream(self, body: dict):
        """Forward a streaming request, yielding SSE lines."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if line:
                            yield line
        except httpx.TimeoutException:
            logger.warning(
                "OpenAI-compatible backend '%s' stream timed out", self.name
            )
            raise
        except Exception as e:
            logger.warning(
                "OpenAI-compatible backend '%s' stream failed: %s", self.name, e
            )
            raise

    async def health_check(self) -> bool:
        """Check endpoint is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(
                    f"{self.url}/models",
                    headers=self._headers(),
                )
                return resp.status_code == 200
        except httpx.HTTPError:
            return False
