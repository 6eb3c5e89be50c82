"""LLM providers — interchangeable text-generation backends for narration.

Every provider matches the protocol:

    name: str
    async def generate(self, request: LlmRequest) -> LlmResponse: ...
    def is_available(self) -> bool: ...

Requests use the chat message shape (system / user / assistant); each
provider converts to its own wire format inside generate().

    MockProvider      — canned text, no network, always available.
    OpenAIProvider    — POST /v1/chat/completions
    ClaudeProvider    — POST /v1/messages (system prompt split out)
    GeminiProvider    — POST /v1beta/models/{model}:generateContent
    KoboldCppProvider — POST /api/v1/generate (messages flattened to a prompt)

Providers are looked up by name through a ProviderRegistry. Every failure
surfaces as LLMError carrying a RETRYABLE / PERMANENT category, which the
narration worker uses to decide between retry, fallback and giving up.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ErrorCategory = Literal["RETRYABLE", "PERMANENT"]

PERMANENT_STATUSES = frozenset({400, 401, 403, 404})
PERMANENT_MARKERS = ("invalid_model", "model_not_found", "content_policy", "content_filter")


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------

class LlmMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class LlmRequest(BaseModel):
    messages: list[LlmMessage]
    max_tokens: int = 1024
    temperature: float = 0.8
    model: str | None = None


class LlmResponse(BaseModel):
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0


# ---------------------------------------------------------------------------
# Protocol: every provider must match this shape
# ---------------------------------------------------------------------------

class LLMProvider(Protocol):
    name: str

    async def generate(self, request: LlmRequest) -> LlmResponse: ...

    def is_available(self) -> bool: ...


# ---------------------------------------------------------------------------
# LLMError + classification
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when a provider cannot be reached or returns an error."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = "RETRYABLE",
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.category: ErrorCategory = category
        self.status = status


def classify_error(exc: BaseException) -> ErrorCategory:
    """RETRYABLE or PERMANENT for any exception raised by a provider call.

    Auth failures, unknown models and content-policy rejections will fail
    the same way again, so they are permanent. Everything else, timeouts
    included, is worth another attempt.
    """
    if isinstance(exc, LLMError):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return "RETRYABLE"
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if status in (401, 403):
        return "PERMANENT"
    message = str(exc).lower()
    if any(marker in message for marker in PERMANENT_MARKERS):
        return "PERMANENT"
    return "RETRYABLE"


def _category_for(status: int, body: str) -> ErrorCategory:
    if status in PERMANENT_STATUSES:
        return "PERMANENT"
    if any(marker in body.lower() for marker in PERMANENT_MARKERS):
        return "PERMANENT"
    return "RETRYABLE"


# ---------------------------------------------------------------------------
# MockProvider
# ---------------------------------------------------------------------------

class MockProvider:
    """Returns a fixed line of narration. No network calls.

    Used in development, in tests and as the default fallback.
    """

    name = "mock"
    model = "mock-v1"

    def __init__(self, text: str = "The dust settles. Nothing more can be made out.") -> None:
        self._text = text

    async def generate(self, request: LlmRequest) -> LlmResponse:
        logger.debug("MockProvider messages=%d", len(request.messages))
        return LlmResponse(text=self._text, model=self.model)

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# HTTP providers
# ---------------------------------------------------------------------------

class _HttpProvider:
    """Shared transport for the HTTP-backed providers.

    Subclasses implement _build_request() and _parse_response(); this class
    owns the httpx call and maps every transport failure onto LLMError.
    """

    name = ""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _build_request(self, request: LlmRequest, model: str) -> tuple[str, dict]:
        raise NotImplementedError

    def _parse_response(self, data: dict, model: str) -> LlmResponse:
        raise NotImplementedError

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def generate(self, request: LlmRequest) -> LlmResponse:
        model = request.model or self._model
        url, body = self._build_request(request, model)
        logger.debug("llm call provider=%s url=%s model=%s", self.name, url, model)

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to {self.name} at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = str(getattr(e.response, "text", ""))[:200]
            raise LLMError(
                f"{self.name} returned HTTP {status}: {detail}",
                category=_category_for(status, detail),
                status=status,
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"{self.name} timed out after {self._timeout}s") from e

        try:
            result = self._parse_response(resp.json(), model)
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected response format from {self.name}") from e
        result.latency_ms = int((time.monotonic() - start) * 1000)
        logger.debug("llm response provider=%s len=%d", self.name, len(result.text))
        return result


class OpenAIProvider(_HttpProvider):
    """OpenAI-compatible chat completions.

    POST {base_url}/v1/chat/completions
    Response: {"choices": [{"message": {"content": "..."}}], "usage": {...}}
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com",
        timeout: float = 120.0,
    ) -> None:
        super().__init__(base_url, api_key, model, timeout)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, request: LlmRequest, model: str) -> tuple[str, dict]:
        body = {
            "model": model,
            "messages": [m.model_dump() for m in request.messages],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
        }
        return f"{self._base_url}/v1/chat/completions", body

    def _parse_response(self, data: dict, model: str) -> LlmResponse:
        choices = data.get("choices")
        if not choices:
            raise LLMError("Unexpected response format from OpenAI-compatible backend")
        usage = data.get("usage") or {}
        return LlmResponse(
            text=choices[0]["message"].get("content") or "",
            model=data.get("model", model),
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )


class ClaudeProvider(_HttpProvider):
    """Anthropic messages API.

    System messages move to the top-level "system" field; only user and
    assistant turns stay in "messages".
    """

    name = "claude"
    api_version = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        base_url: str = "https://api.anthropic.com",
        timeout: float = 120.0,
    ) -> None:
        super().__init__(base_url, api_key, model, timeout)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["x-api-key"] = self._api_key
        headers["anthropic-version"] = self.api_version
        return headers

    def _build_request(self, request: LlmRequest, model: str) -> tuple[str, dict]:
        system = "\n\n".join(m.content for m in request.messages if m.role == "system")
        body: dict = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in request.messages if m.role != "system"
            ],
        }
        if system:
            body["system"] = system
        return f"{self._base_url}/v1/messages", body

    def _parse_response(self, data: dict, model: str) -> LlmResponse:
        blocks = data.get("content")
        if not blocks:
            raise LLMError("Unexpected response format from Claude backend")
        usage = data.get("usage") or {}
        return LlmResponse(
            text="".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text"),
            model=data.get("model", model),
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
        )


class GeminiProvider(_HttpProvider):
    """Google generateContent API.

    The assistant role is called "model" on this API; system messages are
    joined into "systemInstruction".
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout: float = 120.0,
    ) -> None:
        super().__init__(base_url, api_key, model, timeout)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["x-goog-api-key"] = self._api_key
        return headers

    def _build_request(self, request: LlmRequest, model: str) -> tuple[str, dict]:
        system = "\n\n".join(m.content for m in request.messages if m.role == "system")
        body: dict = {
            "contents": [
                {
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in request.messages if m.role != "system"
            ],
            "generationConfig": {
                "maxOutputTokens": request.max_tokens,
                "temperature": request.temperature,
            },
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return f"{self._base_url}/v1beta/models/{model}:generateContent", body

    def _parse_response(self, data: dict, model: str) -> LlmResponse:
        candidates = data.get("candidates")
        if not candidates:
            raise LLMError("Unexpected response format from Gemini backend")
        candidate = candidates[0]
        finish = candidate.get("finishReason")
        if finish and finish != "STOP":
            logger.warning("gemini finishReason=%s", finish)
        parts = candidate.get("content", {}).get("parts", [])
        usage = data.get("usageMetadata") or {}
        return LlmResponse(
            text="".join(p.get("text", "") for p in parts),
            model=model,
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
        )


class KoboldCppProvider(_HttpProvider):
    """Local KoboldCpp server.

    POST {base_url}/api/v1/generate  {"prompt": ...}
    Response: {"results": [{"text": "..."}]}

    Available whenever a URL is configured; no key needed.
    """

    name = "koboldcpp"

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 120.0) -> None:
        super().__init__(base_url, api_key, "koboldcpp", timeout)

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def is_available(self) -> bool:
        return bool(self._base_url)

    @staticmethod
    def flatten(messages: list[LlmMessage]) -> str:
        labels = {"system": "### System", "user": "### Player", "assistant": "### Narrator"}
        blocks = [f"{labels[m.role]}\n{m.content}" for m in messages]
        blocks.append(labels["assistant"])
        return "\n\n".join(blocks) + "\n"

    def _build_request(self, request: LlmRequest, model: str) -> tuple[str, dict]:
        body = {
            "prompt": self.flatten(request.messages),
            "max_length": request.max_tokens,
            "temperature": request.temperature,
        }
        return f"{self._base_url}/api/v1/generate", body

    def _parse_response(self, data: dict, model: str) -> LlmResponse:
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return LlmResponse(text=results[0]["text"], model=model)


# ---------------------------------------------------------------------------
# ProviderRegistry: name-keyed lookup
# ---------------------------------------------------------------------------

class ProviderRegistry:
    """Providers keyed by name. Lookups of unknown names raise KeyError."""

    def __init__(self, providers: list[LLMProvider] | None = None) -> None:
        self._providers: dict[str, LLMProvider] = {}
        for p in providers or []:
            self.register(p)

    def register(self, provider: LLMProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> LLMProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise KeyError(
                f"LLM provider {name!r} is not registered (known: {', '.join(self.names())})"
            ) from None

    def names(self) -> list[str]:
        return list(self._providers)

    def available(self) -> list[str]:
        return [name for name, p in self._providers.items() if p.is_available()]


class CallResult(BaseModel):
    """Outcome of one narration call across primary and fallback."""

    success: bool
    response: LlmResponse | None = None
    error: str | None = None
    category: ErrorCategory | None = None
    provider_used: str
    attempts: int = 0
    errors: list[str] = Field(default_factory=list)
    lease_lost: bool = False
