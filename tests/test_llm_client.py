"""
Tests for the reasoning model client
"""
import json

import httpx
import pytest

from bankguard.core.errors import MalformedModelOutput, UpstreamModelFailure
from bankguard.core.llm_client import LLMClient


def client_with(settings, handler) -> LLMClient:
    return LLMClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_chat_sends_messages_and_parses_reply(settings):
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": '{"ok": true}'},
                                         "done": True})

    client = client_with(settings, handler)
    try:
        response = await client.chat("Hello", system_prompt="Be brief", json_mode=True, temperature=0.0)
    finally:
        await client.close()

    assert response.response == '{"ok": true}'
    assert response.done is True
    assert seen["path"] == "/api/chat"
    body = seen["body"]
    assert body["messages"] == [
        {"role": "system", "content": "Be brief"},
        {"role": "user", "content": "Hello"},
    ]
    assert body["format"] == "json"
    assert body["stream"] is False
    assert body["options"]["temperature"] == 0.0


@pytest.mark.asyncio
async def test_http_error_becomes_upstream_failure(settings):
    client = client_with(settings, lambda request: httpx.Response(503, text="overloaded"))
    try:
        with pytest.raises(UpstreamModelFailure) as info:
            await client.chat("Hello")
    finally:
        await client.close()
    assert info.value.metadata["status_code"] == 503


@pytest.mark.asyncio
async def test_transport_error_becomes_upstream_failure(settings):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = client_with(settings, handler)
    try:
        with pytest.raises(UpstreamModelFailure):
            await client.chat("Hello")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_non_json_body_is_malformed(settings):
    client = client_with(settings, lambda request: httpx.Response(200, text="<html>"))
    try:
        with pytest.raises(MalformedModelOutput):
            await client.chat("Hello")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_embed(settings):
    def handler(request):
        assert request.url.path == "/api/embeddings"
        return httpx.Response(200, json={"embedding": [1, 2, 3]})

    client = client_with(settings, handler)
    try:
        assert await client.embed("text") == [1.0, 2.0, 3.0]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_embed_without_vector_is_malformed(settings):
    client = client_with(settings, lambda request: httpx.Response(200, json={"embedding": []}))
    try:
        with pytest.raises(MalformedModelOutput):
            await client.embed("text")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_health_check(settings):
    client = client_with(settings, lambda request: httpx.Response(200, json={"models": []}))
    try:
        assert await client.health_check() is True
    finally:
        await client.close()
