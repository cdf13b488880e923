"""Adapters around hosted generative-text providers (Gemini / OpenAI-compatible)."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import httpx

from ..errors import ProviderRequestFailed, ResponseParseError
from ..logging import get_logger

_AUTO = object()

PARSE_ERROR_MESSAGE = (
    "Could not parse the response from the AI. The format was unexpected."
)

logger = get_logger("llm")


@dataclass
class LLMRequest:
    """Represents a single structured-output request."""

    prompt: str
    provider: str
    model: str
    temperature: Optional[float]
    base_url: str
    api_key: Optional[str]
    request_timeout: Optional[float]


class LLMRunner:
    """Sends prompts to the configured provider and returns the parsed JSON object."""

    PROVIDERS = ("gemini", "openai")
    DEFAULT_MODELS = {
        "gemini": "gemini-2.5-flash",
        "openai": "gpt-4o-mini",
    }
    DEFAULT_BASE_URLS = {
        "gemini": "https://generativelanguage.googleapis.com/v1beta",
        "openai": "https://api.openai.com/v1",
    }
    ENV_MODEL_KEYS = ("DOCSYNTH_LLM_MODEL",)
    ENV_BASE_URL_KEYS = ("DOCSYNTH_LLM_BASE_URL",)
    ENV_API_KEY_KEYS = {
        "gemini": ("DOCSYNTH_LLM_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
        "openai": ("DOCSYNTH_LLM_API_KEY", "OPENAI_API_KEY"),
    }

    def __init__(
        self,
        provider: str = "gemini",
        *,
        model: str | None = None,
        api_key: str | None | object = _AUTO,
        base_url: str | None = None,
        temperature: Optional[float] = None,
        request_timeout: Optional[float] = 60.0,
        runner: Callable[[LLMRequest], Awaitable[str]] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        provider = (provider or "gemini").lower()
        if provider not in self.PROVIDERS:
            raise ValueError(f"Unsupported provider '{provider}'")
        self.provider = provider
        self.model = model or _first_env_value(self.ENV_MODEL_KEYS) or self.DEFAULT_MODELS[provider]
        self.base_url = (
            base_url
            or _first_env_value(self.ENV_BASE_URL_KEYS)
            or self.DEFAULT_BASE_URLS[provider]
        ).rstrip("/")
        if api_key is _AUTO:
            self.api_key = _first_env_value(self.ENV_API_KEY_KEYS[provider])
        else:
            self.api_key = api_key or None  # type: ignore[assignment]
        self.temperature = temperature
        self.request_timeout = request_timeout
        self._owns_client = http_client is None
        self._http = http_client
        self._requires_key = runner is None and provider == "gemini"
        if runner is not None:
            self._runner = runner
        elif provider == "gemini":
            self._runner = self._gemini_runner
        else:
            self._runner = self._openai_runner

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) or not self._requires_key

    async def generate_structured(self, prompt: str) -> Dict[str, Any]:
        """Send the prompt and return the JSON object the model produced."""
        request = LLMRequest(
            prompt=prompt,
            provider=self.provider,
            model=self.model,
            temperature=self.temperature,
            base_url=self.base_url,
            api_key=self.api_key,
            request_timeout=self.request_timeout,
        )
        text = await self._runner(request)
        return parse_structured(text)

    async def aclose(self) -> None:
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # HTTP runners

    async def _gemini_runner(self, request: LLMRequest) -> str:
        endpoint = f"{request.base_url}/models/{request.model}:generateContent"
        generation_config: Dict[str, object] = {"response_mime_type": "application/json"}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        payload = {
            "contents": [{"parts": [{"text": request.prompt}]}],
            "generationConfig": generation_config,
        }
        params = {"key": request.api_key} if request.api_key else None
        data = await self._post(endpoint, payload, request, params=params)
        return _extract_gemini_text(data)

    async def _openai_runner(self, request: LLMRequest) -> str:
        endpoint = f"{request.base_url}/chat/completions"
        payload: Dict[str, object] = {
            "model": request.model,
            "messages": [{"role": "user", "content": request.prompt}],
            "response_format": {"type": "json_object"},
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        headers = {"Authorization": f"Bearer {request.api_key}"} if request.api_key else None
        data = await self._post(endpoint, payload, request, headers=headers)
        return _extract_openai_text(data)

    async def _post(
        self,
        endpoint: str,
        payload: Dict[str, object],
        request: LLMRequest,
        *,
        params: Dict[str, str] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Any:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=request.request_timeout or 60.0)
        try:
            response = await self._http.post(
                endpoint,
                json=payload,
                params=params,
                headers={"Content-Type": "application/json", **(headers or {})},
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ProviderRequestFailed(None, str(exc) or exc.__class__.__name__) from exc
        if not response.is_success:
            detail = response.text.strip()
            logger.debug("%s API error (%s): %s", request.provider, response.status_code, detail)
            raise ProviderRequestFailed(response.status_code, _error_message(detail))
        try:
            return response.json()
        except ValueError as exc:
            raise ResponseParseError(PARSE_ERROR_MESSAGE) from exc


def parse_structured(text: str) -> Dict[str, Any]:
    """Parse candidate text into a JSON object, tolerating a Markdown code fence."""
    candidate = (text or "").strip()
    if candidate.startswith("```"):
        candidate = candidate.strip("`")
        if candidate.lower().startswith("json"):
            candidate = candidate[4:]
        candidate = candidate.strip()
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(PARSE_ERROR_MESSAGE) from exc
    if not isinstance(value, dict):
        raise ResponseParseError(PARSE_ERROR_MESSAGE)
    return value


def _extract_gemini_text(payload: Any) -> str:
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ResponseParseError(PARSE_ERROR_MESSAGE) from exc
    if not isinstance(text, str):
        raise ResponseParseError(PARSE_ERROR_MESSAGE)
    return text


def _extract_openai_text(payload: Any) -> str:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        raise ResponseParseError(PARSE_ERROR_MESSAGE)
    first = choices[0]
    if isinstance(first, dict):
        message = first.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        if isinstance(first.get("text"), str):
            return first["text"]
    raise ResponseParseError(PARSE_ERROR_MESSAGE)


def _error_message(detail: str) -> str:
    """Pull the provider's own error message out of a JSON error body when present."""
    try:
        body = json.loads(detail)
    except (json.JSONDecodeError, TypeError):
        return detail
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
    return detail


def _first_env_value(keys: Sequence[str]) -> str | None:
    for key in keys:
        value = os.getenv(key)
        if value:
            return value
    return None


__all__ = ["LLMRequest", "LLMRunner", "PARSE_ERROR_MESSAGE", "parse_structured"]
