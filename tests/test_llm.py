"""Tests for rpg_turns.llm — providers, error classification, registry."""

import asyncio

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from rpg_turns.llm import (
    ClaudeProvider,
    GeminiProvider,
    KoboldCppProvider,
    LLMError,
    LlmMessage,
    LlmRequest,
    MockProvider,
    OpenAIProvider,
    ProviderRegistry,
    classify_error,
)


def _request(**kwargs) -> LlmRequest:
    return LlmRequest(
        messages=[
            LlmMessage(role="system", content="You narrate."),
            LlmMessage(role="user", content="I attack."),
        ],
        **kwargs,
    )


def _mock_response(body: dict, status: int = 200, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


# ---------------------------------------------------------------------------
# MockProvider
# ---------------------------------------------------------------------------

class TestMockProvider:
    async def test_returns_canned_text(self) -> None:
        provider = MockProvider(text="Steel rings.")
        result = await provider.generate(_request())
        assert result.text == "Steel rings."
        assert result.model == "mock-v1"

    def test_always_available(self) -> None:
        assert MockProvider().is_available()


# ---------------------------------------------------------------------------
# OpenAIProvider
# ---------------------------------------------------------------------------

class TestOpenAIProvider:
    @pytest.fixture
    def provider(self) -> OpenAIProvider:
        return OpenAIProvider(api_key="sk-test", model="gpt-4o", base_url="http://api.local/")

    async def test_happy_path(self, provider: OpenAIProvider) -> None:
        body = {
            "model": "gpt-4o-2024",
            "choices": [{"message": {"content": "The bandit staggers."}}],
            "usage": {"prompt_tokens": 42, "completion_tokens": 7},
        }
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await provider.generate(_request())
        assert result.text == "The bandit staggers."
        assert result.model == "gpt-4o-2024"
        assert result.prompt_tokens == 42
        assert result.completion_tokens == 7

    async def test_posts_chat_body(self, provider: OpenAIProvider) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider.generate(_request(max_tokens=200, temperature=0.3))
        assert mock_post.call_args[0][0] == "http://api.local/v1/chat/completions"
        sent = mock_post.call_args.kwargs["json"]
        assert sent["model"] == "gpt-4o"
        assert sent["max_tokens"] == 200
        assert sent["temperature"] == 0.3
        assert sent["messages"][0] == {"role": "system", "content": "You narrate."}
        headers = mock_post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer sk-test"

    async def test_request_model_overrides_default(self, provider: OpenAIProvider) -> None:
        body = {"choices": [{"message": {"content": "ok"}}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider.generate(_request(model="gpt-4o-mini"))
        assert mock_post.call_args.kwargs["json"]["model"] == "gpt-4o-mini"

    async def test_malformed_response_raises_llm_error(self, provider: OpenAIProvider) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await provider.generate(_request())

    def test_available_only_with_key(self) -> None:
        assert OpenAIProvider(api_key="k").is_available()
        assert not OpenAIProvider(api_key="").is_available()


# ---------------------------------------------------------------------------
# ClaudeProvider
# ---------------------------------------------------------------------------

class TestClaudeProvider:
    @pytest.fixture
    def provider(self) -> ClaudeProvider:
        return ClaudeProvider(api_key="ant-test", model="claude-test")

    async def test_system_prompt_split_out(self, provider: ClaudeProvider) -> None:
        body = {"content": [{"type": "text", "text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider.generate(_request())
        assert mock_post.call_args[0][0] == "https://api.anthropic.com/v1/messages"
        sent = mock_post.call_args.kwargs["json"]
        assert sent["system"] == "You narrate."
        assert sent["messages"] == [{"role": "user", "content": "I attack."}]
        headers = mock_post.call_args.kwargs["headers"]
        assert headers["x-api-key"] == "ant-test"
        assert headers["anthropic-version"] == "2023-06-01"

    async def test_joins_text_blocks(self, provider: ClaudeProvider) -> None:
        body = {
            "content": [{"type": "text", "text": "Sparks "}, {"type": "text", "text": "fly."}],
            "usage": {"input_tokens": 30, "output_tokens": 4},
        }
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await provider.generate(_request())
        assert result.text == "Sparks fly."
        assert result.prompt_tokens == 30
        assert result.completion_tokens == 4
        assert result.model == "claude-test"


# ---------------------------------------------------------------------------
# GeminiProvider
# ---------------------------------------------------------------------------

class TestGeminiProvider:
    @pytest.fixture
    def provider(self) -> GeminiProvider:
        return GeminiProvider(api_key="g-test", model="gemini-test")

    async def test_request_shape(self, provider: GeminiProvider) -> None:
        body = {"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        request = LlmRequest(messages=[
            LlmMessage(role="system", content="sys"),
            LlmMessage(role="user", content="hi"),
            LlmMessage(role="assistant", content="hello"),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            result = await provider.generate(request)
        assert result.text == "ok"
        url = mock_post.call_args[0][0]
        assert url == "https://generativelanguage.googleapis.com/v1beta/models/gemini-test:generateContent"
        sent = mock_post.call_args.kwargs["json"]
        assert sent["systemInstruction"] == {"parts": [{"text": "sys"}]}
        assert [c["role"] for c in sent["contents"]] == ["user", "model"]
        assert mock_post.call_args.kwargs["headers"]["x-goog-api-key"] == "g-test"

    async def test_no_candidates_raises(self, provider: GeminiProvider) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"candidates": []}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Unexpected response format"):
                await provider.generate(_request())


# ---------------------------------------------------------------------------
# KoboldCppProvider
# ---------------------------------------------------------------------------

class TestKoboldCppProvider:
    @pytest.fixture
    def provider(self) -> KoboldCppProvider:
        return KoboldCppProvider(base_url="http://localhost:5001/")

    async def test_happy_path(self, provider: KoboldCppProvider) -> None:
        body = {"results": [{"text": "The tavern is dark and smoky."}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await provider.generate(_request())
        assert result.text == "The tavern is dark and smoky."
        assert mock_post.call_args[0][0] == "http://localhost:5001/api/v1/generate"

    async def test_prompt_flattened(self, provider: KoboldCppProvider) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider.generate(_request(max_tokens=64))
        sent = mock_post.call_args.kwargs["json"]
        assert sent["prompt"] == "### System\nYou narrate.\n\n### Player\nI attack.\n\n### Narrator\n"
        assert sent["max_length"] == 64

    async def test_no_auth_header_when_no_api_key(self, provider: KoboldCppProvider) -> None:
        body = {"results": [{"text": "ok"}]}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            await provider.generate(_request())
        assert "Authorization" not in mock_post.call_args.kwargs["headers"]

    def test_available_with_url_only(self) -> None:
        assert KoboldCppProvider(base_url="http://localhost:5001").is_available()
        assert not KoboldCppProvider(base_url="").is_available()


# ---------------------------------------------------------------------------
# Transport errors
# ---------------------------------------------------------------------------

class TestTransportErrors:
    @pytest.fixture
    def provider(self) -> OpenAIProvider:
        return OpenAIProvider(api_key="sk-test")

    async def test_connect_error_is_retryable(self, provider: OpenAIProvider) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="Cannot connect") as exc:
                await provider.generate(_request())
        assert exc.value.category == "RETRYABLE"

    async def test_timeout_is_retryable(self, provider: OpenAIProvider) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match="timed out") as exc:
                await provider.generate(_request())
        assert exc.value.category == "RETRYABLE"

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_server_errors_are_retryable(self, provider: OpenAIProvider, status: int) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=status))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError, match=f"HTTP {status}") as exc:
                await provider.generate(_request())
        assert exc.value.category == "RETRYABLE"
        assert exc.value.status == status

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors_are_permanent(self, provider: OpenAIProvider, status: int) -> None:
        mock_post = AsyncMock(return_value=_mock_response({}, status=status))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError) as exc:
                await provider.generate(_request())
        assert exc.value.category == "PERMANENT"

    async def test_unknown_model_body_is_permanent(self, provider: OpenAIProvider) -> None:
        resp = _mock_response({}, status=422, text='{"error": {"code": "model_not_found"}}')
        mock_post = AsyncMock(return_value=resp)
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(LLMError) as exc:
                await provider.generate(_request())
        assert exc.value.category == "PERMANENT"


# ---------------------------------------------------------------------------
# classify_error
# ---------------------------------------------------------------------------

class TestClassifyError:
    def test_llm_error_keeps_its_category(self) -> None:
        assert classify_error(LLMError("x", category="PERMANENT")) == "PERMANENT"
        assert classify_error(LLMError("x")) == "RETRYABLE"

    def test_timeouts_retryable(self) -> None:
        assert classify_error(asyncio.TimeoutError()) == "RETRYABLE"
        assert classify_error(httpx.ReadTimeout("slow")) == "RETRYABLE"

    def test_status_attribute(self) -> None:
        err = RuntimeError("denied")
        err.status_code = 401
        assert classify_error(err) == "PERMANENT"

    def test_message_markers(self) -> None:
        assert classify_error(ValueError("content_policy violation")) == "PERMANENT"
        assert classify_error(ValueError("Invalid_Model requested")) == "PERMANENT"

    def test_unknown_errors_retryable(self) -> None:
        assert classify_error(RuntimeError("socket hiccup")) == "RETRYABLE"


# ---------------------------------------------------------------------------
# ProviderRegistry
# ---------------------------------------------------------------------------

class TestProviderRegistry:
    def test_lookup_by_name(self) -> None:
        mock = MockProvider()
        registry = ProviderRegistry([mock, OpenAIProvider(api_key="")])
        assert registry.get("mock") is mock
        assert registry.names() == ["mock", "openai"]
        assert registry.available() == ["mock"]

    def test_unknown_name_raises(self) -> None:
        with pytest.raises(KeyError, match="gemini"):
            ProviderRegistry().get("gemini")

    def test_unknown_name_lists_known_providers(self) -> None:
        registry = ProviderRegistry([MockProvider(), OpenAIProvider(api_key="")])
        with pytest.raises(KeyError, match="known: mock, openai"):
            registry.get("gemini")

    def test_register_replaces_same_name(self) -> None:
        registry = ProviderRegistry([MockProvider(text="a")])
        replacement = MockProvider(text="b")
        registry.register(replacement)
        assert registry.get("mock") is replacement
        assert registry.names() == ["mock"]
