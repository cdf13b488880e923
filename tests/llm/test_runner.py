"""Tests for the hosted LLM runner."""

from __future__ import annotations

import json

import httpx
import pytest

from docsynth.errors import ProviderRequestFailed, ResponseParseError
from docsynth.llm.runner import PARSE_ERROR_MESSAGE, LLMRequest, LLMRunner, parse_structured


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "DOCSYNTH_LLM_MODEL",
        "DOCSYNTH_LLM_BASE_URL",
        "DOCSYNTH_LLM_API_KEY",
        "GEMINI_API_KEY",
        "GOOGLE_API_KEY",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.mark.asyncio
async def test_llm_runner_constructs_request() -> None:
    captured = {}

    async def fake_runner(request: LLMRequest) -> str:
        captured["request"] = request
        return '{"summary": "ok"}'

    runner = LLMRunner(
        model="custom-model",
        api_key="key",
        temperature=0.15,
        request_timeout=42.0,
        runner=fake_runner,
    )
    result = await runner.generate_structured("Hello world")

    assert result == {"summary": "ok"}
    assert captured["request"] == LLMRequest(
        prompt="Hello world",
        provider="gemini",
        model="custom-model",
        temperature=0.15,
        base_url="https://generativelanguage.googleapis.com/v1beta",
        api_key="key",
        request_timeout=42.0,
    )


@pytest.mark.asyncio
async def test_gemini_runner_posts_generate_content() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        text = json.dumps({"documentation": "# Docs"})
        return httpx.Response(
            200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    runner = LLMRunner(api_key="gem-key", temperature=0.2, http_client=client)

    assert await runner.generate_structured("Summarize") == {"documentation": "# Docs"}
    assert seen["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/"
        "gemini-2.5-flash:generateContent?key=gem-key"
    )
    assert seen["body"] == {
        "contents": [{"parts": [{"text": "Summarize"}]}],
        "generationConfig": {"response_mime_type": "application/json", "temperature": 0.2},
    }


@pytest.mark.asyncio
async def test_openai_runner_posts_chat_completion() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"choices": [{"message": {"content": '{"summary": "fine"}'}}]}
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    runner = LLMRunner(
        "openai", base_url="http://localhost:8080/v1/", api_key="sk", http_client=client
    )

    assert await runner.generate_structured("Hi") == {"summary": "fine"}
    assert seen["url"] == "http://localhost:8080/v1/chat/completions"
    assert seen["auth"] == "Bearer sk"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert seen["body"]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_error_status_carries_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": {"code": 400, "message": "API key not valid."}}
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    runner = LLMRunner(api_key="bad", http_client=client)

    with pytest.raises(ProviderRequestFailed) as excinfo:
        await runner.generate_structured("Hi")
    assert excinfo.value.status == 400
    assert excinfo.value.message == "API key not valid."


@pytest.mark.asyncio
async def test_missing_candidate_text_is_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    runner = LLMRunner(api_key="k", http_client=client)

    with pytest.raises(ResponseParseError) as excinfo:
        await runner.generate_structured("Hi")
    assert str(excinfo.value) == PARSE_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_invalid_base_url_raises_provider_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    runner = LLMRunner(
        api_key="k", base_url="https://llm.example.com:notaport", http_client=client
    )

    with pytest.raises(ProviderRequestFailed) as excinfo:
        await runner.generate_structured("Hi")
    assert excinfo.value.status is None


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    runner = LLMRunner(api_key="k", http_client=client)

    await runner.aclose()

    assert not client.is_closed
    await client.aclose()


def test_credentials_reflect_provider_and_key(monkeypatch: pytest.MonkeyPatch) -> None:
    assert LLMRunner().has_credentials is False
    assert LLMRunner("openai").has_credentials is True

    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    runner = LLMRunner()
    assert runner.api_key == "from-env"
    assert runner.has_credentials is True
    assert LLMRunner(api_key=None).has_credentials is False


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(ValueError):
        LLMRunner("ollama")


def test_parse_structured_accepts_fenced_json() -> None:
    assert parse_structured('```json\n{"summary": "x"}\n```') == {"summary": "x"}


@pytest.mark.parametrize("text", ["not json", "[1, 2]", ""])
def test_parse_structured_rejects_non_objects(text: str) -> None:
    with pytest.raises(ResponseParseError):
        parse_structured(text)
