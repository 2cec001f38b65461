# tests/core/test_gemini_client.py
import json

import httpx
import pytest

from contextchat.config.schema import GenerationConfig
from contextchat.core.errors import (ContentBlocked, InvalidCredential, MissingCredential, NetworkError,
                                     RateLimited, RemoteApiError, TokenizerFailure)
from contextchat.core.gemini_client import GeminiClient, GeminiClientFactory, credential_fingerprint
from contextchat.core.models import ROLE_ASSISTANT, ROLE_USER, Message

MODEL = "gemini-2.0-flash"


class RecordingHandler:
    """httpx.MockTransport handler replying from a queue of (status, body) pairs."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            return httpx.Response(200, json={"totalTokens": 0})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        return httpx.Response(status, json=body)

    def body(self, index=0):
        return json.loads(self.requests[index].content)


def _client(handler, key="secret-key"):
    return GeminiClient(key, transport=httpx.MockTransport(handler))


def _reply(text="Hello!", finish="STOP"):
    return 200, {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish}]}


@pytest.mark.asyncio
async def test_count_tokens_sends_key_header():
    handler = RecordingHandler((200, {"totalTokens": 42}))
    client = _client(handler)
    assert await client.count_tokens("some text", MODEL) == 42
    request = handler.requests[0]
    assert request.headers["x-goog-api-key"] == "secret-key"
    assert request.url.path.endswith(f"/models/{MODEL}:countTokens")
    assert "key" not in request.url.params
    assert handler.body()["contents"][0]["parts"][0]["text"] == "some text"
    await client.aclose()


@pytest.mark.asyncio
async def test_count_tokens_empty_text_makes_no_request():
    handler = RecordingHandler()
    client = _client(handler)
    assert await client.count_tokens("", MODEL) == 0
    assert handler.requests == []
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("status,body,error", [
    (429, {"error": {"message": "quota"}}, RateLimited),
    (401, {"error": {"message": "unauthorized"}}, InvalidCredential),
    (403, {"error": {"message": "forbidden"}}, InvalidCredential),
    (400, {"error": {"message": "API key not valid. Please pass a valid API key."}}, InvalidCredential),
    (500, {"error": {"message": "backend exploded"}}, TokenizerFailure),
])
async def test_count_tokens_error_classification(status, body, error):
    client = _client(RecordingHandler((status, body)))
    with pytest.raises(error) as excinfo:
        await client.count_tokens("text", MODEL)
    assert excinfo.value.status_code == status
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_failure_is_network_error():
    client = _client(RecordingHandler(httpx.ConnectError("connection refused")))
    with pytest.raises(NetworkError) as excinfo:
        await client.count_tokens("text", MODEL)
    assert "connection refused" in excinfo.value.user_message
    await client.aclose()


def test_missing_credential():
    with pytest.raises(MissingCredential):
        GeminiClient("   ")


@pytest.mark.asyncio
async def test_generate_builds_payload_and_counts_reply():
    handler = RecordingHandler(_reply("Hi there"), (200, {"totalTokens": 2}))
    client = _client(handler)
    history = [
        Message(1, ROLE_USER, "first"),
        Message(2, ROLE_ASSISTANT, "oops", is_error=True),
        Message(3, ROLE_ASSISTANT, "answer"),
        Message(4, ROLE_USER, "second"),
    ]
    generation = GenerationConfig(temperature=0.3, top_p=0.5, output_length=1000000)

    result = await client.generate_response(history, MODEL, generation, system_instructions="Be nice.",
                                            file_context_text="--- File: a.txt ---\nalpha")

    body = handler.body()
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    last = body["contents"][-1]["parts"][0]["text"]
    assert "--- File: a.txt ---\nalpha" in last and last.endswith("second")
    assert body["systemInstruction"]["parts"][0]["text"] == "Be nice."
    assert body["generationConfig"] == {"temperature": 0.3, "maxOutputTokens": 8192, "topP": 0.5}
    assert all(s["threshold"] == "BLOCK_NONE" for s in body["safetySettings"])
    assert result.text == "Hi there"
    assert result.token_count == 2
    assert result.output_length == 8192
    assert result.model_used == MODEL
    await client.aclose()


@pytest.mark.asyncio
async def test_generate_without_system_instructions_omits_field():
    handler = RecordingHandler(_reply(), (200, {"totalTokens": 1}))
    client = _client(handler)
    await client.generate_response([Message(1, ROLE_USER, "hi")], MODEL, GenerationConfig(), system_instructions="  ")
    assert "systemInstruction" not in handler.body()
    await client.aclose()


@pytest.mark.asyncio
async def test_generate_requires_final_user_message():
    handler = RecordingHandler()
    client = _client(handler)
    with pytest.raises(ValueError):
        await client.generate_response([Message(1, ROLE_USER, "q"), Message(2, ROLE_ASSISTANT, "a")],
                                       MODEL, GenerationConfig())
    assert handler.requests == []
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("reply,reason", [
    ((200, {"promptFeedback": {"blockReason": "OTHER"}}), "OTHER"),
    (_reply("", finish="SAFETY"), "SAFETY"),
])
async def test_blocked_content(reply, reason):
    client = _client(RecordingHandler(reply))
    with pytest.raises(ContentBlocked) as excinfo:
        await client.generate_response([Message(1, ROLE_USER, "q")], MODEL, GenerationConfig())
    assert excinfo.value.reason == reason
    await client.aclose()


@pytest.mark.asyncio
async def test_generate_error_and_empty_candidates():
    client = _client(RecordingHandler((500, {"error": {"message": "boom"}}), (200, {"candidates": []})))
    with pytest.raises(RemoteApiError, match="boom"):
        await client.generate_response([Message(1, ROLE_USER, "q")], MODEL, GenerationConfig())
    with pytest.raises(RemoteApiError, match="no response candidates"):
        await client.generate_response([Message(1, ROLE_USER, "q")], MODEL, GenerationConfig())
    await client.aclose()


@pytest.mark.asyncio
async def test_reply_token_count_failure_is_not_fatal():
    client = _client(RecordingHandler(_reply("ok"), (500, {"error": {"message": "count failed"}})))
    result = await client.generate_response([Message(1, ROLE_USER, "q")], MODEL, GenerationConfig())
    assert result.text == "ok"
    assert result.token_count == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_factory_caches_by_fingerprint():
    factory = GeminiClientFactory(transport=httpx.MockTransport(RecordingHandler()))
    first = factory.get("key-one")
    assert factory.get(" key-one ") is first
    second = factory.get("key-two")
    assert second is not first
    assert first.fingerprint == credential_fingerprint("key-one")
    assert "key-one" not in first.fingerprint
    with pytest.raises(MissingCredential):
        factory.get("")
    await factory.aclose()
    assert factory.get("key-one") is not first
    await factory.aclose()
