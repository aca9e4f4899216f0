"""
Tests for the completion backend.
Run with: pytest tests/test_backends.py
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from glassist.backends.openai_compat import OpenAICompatibleBackend


class _Stream:
    """Stands in for the async context manager returned by AsyncClient.stream()."""

    def __init__(self, lines, status_error=None):
        self.resp = MagicMock()
        self.resp.raise_for_status = MagicMock(side_effect=status_error)

        async def aiter_lines():
            for line in lines:
                yield line

        self.resp.aiter_lines = aiter_lines

    async def __aenter__(self):
        return self.resp

    async def __aexit__(self, *exc):
        return False


def _patch_client(mock_client_cls, stream):
    mock_client = AsyncMock()
    mock_client.stream = MagicMock(return_value=stream)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _backend(**kw):
    return OpenAICompatibleBackend(
        name="llm", url="https://api.example.com/v1/", model="gpt-oss-120b", api_key="sk-test", **kw
    )


def test_init_strips_trailing_slash():
    b = _backend(timeout=60)
    assert b.url == "https://api.example.com/v1"
    assert b.timeout == 60


def test_headers_without_key():
    b = OpenAICompatibleBackend(name="local", url="http://localhost:8080/v1", model="m")
    assert b._headers() == {}


@pytest.mark.asyncio
async def test_stream_completion_parses_chunks():
    lines = [
        ": keep-alive",
        'data: {"choices":[{"delta":{"content":"Hel"}}]}',
        "data: not-json",
        'data: {"choices":[{"delta":{"content":"lo"}}]}',
        "data: [DONE]",
        'data: {"choices":[{"delta":{"content":"ignored"}}]}',
    ]
    b = _backend()
    with patch("glassist.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = _patch_client(mock_client_cls, _Stream(lines))
        chunks = [c async for c in b.stream_completion({"messages": []})]

    assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["Hel", "lo"]

    args = mock_client.stream.call_args
    assert args.args == ("POST", "https://api.example.com/v1/chat/completions")
    assert args.kwargs["json"] == {"model": "gpt-oss-120b", "messages": [], "stream": True}
    assert args.kwargs["headers"] == {"Authorization": "Bearer sk-test"}


@pytest.mark.asyncio
async def test_stream_http_error_propagates():
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    error = httpx.HTTPStatusError("401", request=request, response=httpx.Response(401, request=request))
    b = _backend()
    with patch("glassist.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        _patch_client(mock_client_cls, _Stream([], status_error=error))
        with pytest.raises(httpx.HTTPStatusError):
            [c async for c in b.stream_completion({"messages": []})]


@pytest.mark.asyncio
async def test_health_check():
    b = _backend()
    resp = MagicMock()
    resp.status_code = 200
    with patch("glassist.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.get.return_value = resp
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client

        assert await b.health_check() is True
        mock_client.get.assert_awaited_once()
        assert mock_client.get.call_args.args[0] == "https://api.example.com/v1/models"


@pytest.mark.asyncio
async def test_health_check_unreachable():
    b = _backend()
    with patch("glassist.backends.openai_compat.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.get.side_effect = httpx.ConnectError("refused")
        mock_client.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client.__aexit__ = AsyncMock(return_value=False)
        mock_client_cls.return_value = mock_client

        assert await b.health_check() is False
