"""Tests for siteindexer.ai module."""

from __future__ import annotations

import json

import httpx
import pytest

from siteindexer.ai import ChatClient
from siteindexer.config import RuntimeSettings
from siteindexer.errors import AIRequestError


def _client(handler, **kwargs) -> ChatClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatClient("sk-test", base_url="https://llm.test/v1/", http_client=http_client, **kwargs)


class TestChatClient:
    def test_from_settings(self):
        settings = RuntimeSettings(openai_api_key="sk-env", openai_model="gpt-x", ai_max_content_length=10)
        client = ChatClient.from_settings(settings)
        assert client.configured
        assert client.model == "gpt-x"
        assert client.truncate("a" * 12) == "a" * 10 + "..."
        assert client.truncate("short") == "short"

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

        client = _client(handler, model="gpt-x")
        result = await client.complete([{"role": "user", "content": "hi"}], temperature=0.3)

        assert result == "hello"
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {
            "model": "gpt-x",
            "messages": [{"role": "user", "content": "hi"}],
            "temperature": 0.3,
        }

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(AIRequestError, match="OPENAI_API_KEY"):
            await ChatClient(None).complete([])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="upstream down"),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, json={"choices": [{"message": {"content": ""}}]}),
        ],
    )
    async def test_unusable_responses(self, response):
        client = _client(lambda request: response)
        with pytest.raises(AIRequestError):
            await client.complete([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AIRequestError, match="request failed"):
            await _client(handler).complete([{"role": "user", "content": "hi"}])
