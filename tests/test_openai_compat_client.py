from __future__ import annotations

import json

import httpx
import pytest

from agentpilot.models.openai_compat import OpenAICompatChatModel, OpenAICompatError
from agentpilot.reasoning import ModelReasoner, PromptContext


def test_openai_base_url_and_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        data = json.loads(request.content.decode())
        assert data["model"] == "gpt-test"
        assert data["temperature"] == 0.2
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "ok"}}], "usage": {"total_tokens": 3}},
        )

    transport = httpx.MockTransport(handler)
    client = OpenAICompatChatModel(
        base_url="https://example.com/v1/",
        api_key="test-key",
        model="gpt-test",
        temperature=0.2,
        transport=transport,
    )
    response = client.chat(messages=[{"role": "user", "content": "hi"}])
    assert response.final_text == "ok"
    assert response.usage == {"total_tokens": 3}
    assert requests[0].url == httpx.URL("https://example.com/v1/chat/completions")
    assert requests[0].headers["Authorization"] == "Bearer test-key"


@pytest.mark.parametrize(
    ("base_url", "expected"),
    [
        ("https://example.com", "https://example.com/v1/chat/completions"),
        ("localhost:8000/api", "http://localhost:8000/api/v1/chat/completions"),
        ("https://example.com/v1/chat/completions", "https://example.com/v1/chat/completions"),
    ],
)
def test_openai_url_normalization(base_url, expected):
    client = OpenAICompatChatModel(base_url=base_url, api_key="k", model="m")
    assert client._build_url() == expected


def test_openai_extra_headers():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    client = OpenAICompatChatModel(
        base_url="https://example.com",
        api_key="test-key",
        model="gpt-test",
        extra_headers={"X-Test": "yes"},
        transport=httpx.MockTransport(handler),
    )
    client.chat(messages=[{"role": "user", "content": "hi"}])
    assert requests[0].headers["X-Test"] == "yes"


def test_openai_error_status_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    client = OpenAICompatChatModel(
        base_url="https://example.com",
        api_key="test-key",
        model="gpt-test",
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(OpenAICompatError) as excinfo:
        client.chat(messages=[{"role": "user", "content": "hi"}])
    assert "503" in str(excinfo.value)


def test_openai_malformed_json_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json")

    client = OpenAICompatChatModel(
        base_url="https://example.com",
        api_key="test-key",
        model="gpt-test",
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(OpenAICompatError):
        client.chat(messages=[{"role": "user", "content": "hi"}])


def test_openai_non_text_content_is_empty():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": None}}]})

    client = OpenAICompatChatModel(
        base_url="https://example.com",
        api_key="test-key",
        model="gpt-test",
        transport=httpx.MockTransport(handler),
    )
    assert client.chat(messages=[]).final_text == ""


def test_model_reasoner_over_http():
    def handler(request: httpx.Request) -> httpx.Response:
        data = json.loads(request.content.decode())
        assert data["messages"][0]["role"] == "system"
        return httpx.Response(200, json={"choices": [{"message": {"content": "Final answer: sunny"}}]})

    client = OpenAICompatChatModel(
        base_url="https://example.com",
        api_key="test-key",
        model="gpt-test",
        transport=httpx.MockTransport(handler),
    )
    reasoner = ModelReasoner(client)
    text = reasoner.reason(PromptContext(query="weather in London", iteration=1, max_iterations=3))
    assert text == "Final answer: sunny"
