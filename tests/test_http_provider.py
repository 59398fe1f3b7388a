"""Tests for the OpenAI-compatible HTTP completion provider."""

import json

import httpx
import pytest

from relaybot.config.schema import ProviderConfig
from relaybot.providers import make_provider
from relaybot.providers.http_provider import HttpChatProvider


def _provider(handler) -> HttpChatProvider:
    return HttpChatProvider(
        api_key="sk-test",
        api_base="https://api.example.com/v1/",
        transport=httpx.MockTransport(handler),
    )


MESSAGES = [{"role": "user", "content": "hi"}]


class TestHttpChatProvider:
    @pytest.mark.asyncio
    async def test_success_request_and_parse(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": " Hello! "}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
            })

        response = await _provider(handler).chat(MESSAGES, model="deepseek-chat", temperature=0.7)

        assert seen["url"] == "https://api.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "deepseek-chat"
        assert seen["body"]["messages"] == MESSAGES
        assert seen["body"]["temperature"] == 0.7
        assert response.content == "Hello!"
        assert not response.is_error
        assert response.usage["total_tokens"] == 5

    @pytest.mark.asyncio
    async def test_non_2xx_is_error(self):
        response = await _provider(lambda r: httpx.Response(503, text="busy")).chat(MESSAGES)

        assert response.is_error
        assert "503" in response.content

    @pytest.mark.asyncio
    async def test_malformed_json_is_error(self):
        response = await _provider(lambda r: httpx.Response(200, text="<html>oops")).chat(MESSAGES)
        assert response.is_error

    @pytest.mark.asyncio
    async def test_missing_choices_is_error(self):
        response = await _provider(lambda r: httpx.Response(200, json={"choices": []})).chat(MESSAGES)
        assert response.is_error

    @pytest.mark.asyncio
    async def test_empty_content_is_error(self):
        body = {"choices": [{"message": {"content": ""}}]}
        response = await _provider(lambda r: httpx.Response(200, json=body)).chat(MESSAGES)
        assert response.is_error

    @pytest.mark.asyncio
    async def test_connection_error_is_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        response = await _provider(handler).chat(MESSAGES)
        assert response.is_error

    def test_default_model(self):
        assert HttpChatProvider().get_default_model() == "deepseek-chat"


class TestMakeProvider:
    def test_http_kind(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "from-env")
        provider = make_provider(ProviderConfig())

        assert isinstance(provider, HttpChatProvider)
        assert provider.api_key == "from-env"
        assert provider.endpoint == "https://api.deepseek.com/v1/chat/completions"

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", "from-env")
        provider = make_provider(ProviderConfig(api_key="from-config"))
        assert provider.api_key == "from-config"
