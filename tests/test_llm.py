"""
Unit tests for the LLM module.
Tests LLMMessage, LLMResponse, providers, and factory.
"""

import httpx
import json
import pytest
from unittest.mock import AsyncMock, patch, MagicMock

from chatsync.core.exceptions import CompletionError
from chatsync.llm.base import LLMMessage, LLMResponse
from chatsync.llm.openai_provider import OpenAIProvider
from chatsync.llm.gemini_provider import GeminiProxyProvider
from chatsync.llm.factory import create_llm_provider


class TestLLMMessage:
    """Tests for LLMMessage dataclass."""

    def test_text_message(self):
        msg = LLMMessage.text("user", "Hello")
        assert msg.role == "user"
        assert msg.content == "Hello"

    def test_system_message(self):
        msg = LLMMessage.text("system", "You are a helpful assistant")
        assert msg.role == "system"
        assert msg.content == "You are a helpful assistant"


class TestLLMResponse:
    """Tests for LLMResponse dataclass."""

    def test_basic_response(self):
        resp = LLMResponse(content="Hello!", model="gpt-4")
        assert resp.content == "Hello!"
        assert resp.model == "gpt-4"
        assert resp.usage == {}
        assert resp.raw is None


class _FakeStreamResponse:
    """Stands in for the response yielded by ``client.stream``."""

    def __init__(self, lines):
        self._lines = lines

    def raise_for_status(self):
        return None

    async def aiter_lines(self):
        for line in self._lines:
            yield line


class _FakeStreamContext:
    def __init__(self, response):
        self.response = response

    async def __aenter__(self):
        return self.response

    async def __aexit__(self, *args):
        return False


class TestOpenAIProvider:
    """Tests for OpenAI-compatible provider."""

    def test_init_defaults(self):
        provider = OpenAIProvider(api_key="test-key")
        assert provider.api_key == "test-key"
        assert provider.model == "gpt-4o-mini"
        assert provider.base_url == "https://api.openai.com/v1"

    def test_init_custom(self):
        provider = OpenAIProvider(
            api_key="key",
            model="gpt-3.5-turbo",
            base_url="https://custom.api.com/v1/"
        )
        assert provider.model == "gpt-3.5-turbo"
        assert provider.base_url == "https://custom.api.com/v1"

    def test_format_messages(self):
        provider = OpenAIProvider(api_key="test")
        messages = [
            LLMMessage.text("system", "sys prompt"),
            LLMMessage.text("user", "hello")
        ]
        formatted = provider._format_messages(messages)
        assert len(formatted) == 2
        assert formatted[0] == {"role": "system", "content": "sys prompt"}
        assert formatted[1] == {"role": "user", "content": "hello"}

    def test_headers(self):
        provider = OpenAIProvider(api_key="sk-test123")
        headers = provider._get_headers()
        assert headers["Authorization"] == "Bearer sk-test123"
        assert headers["Content-Type"] == "application/json"

    def test_stream_payload(self):
        provider = OpenAIProvider(api_key="k")
        payload = provider._build_payload([LLMMessage.text("user", "hi")], None, None, stream=True)
        assert payload["stream"] is True
        assert payload["temperature"] == 0.7
        assert payload["max_tokens"] == 2048

    @pytest.mark.asyncio
    async def test_chat_completion_success(self):
        provider = OpenAIProvider(api_key="test-key")
        mock_response = MagicMock()
        mock_response.json.return_value = {
            "choices": [{"message": {"content": "Test response"}}],
            "model": "gpt-4o-mini",
            "usage": {"prompt_tokens": 10, "completion_tokens": 5}
        }
        mock_response.raise_for_status = MagicMock()

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.post.return_value = mock_response
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value = mock_instance

            result = await provider.chat_completion(
                [LLMMessage.text("user", "Hello")]
            )

            assert result.content == "Test response"
            assert result.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_chat_completion_stream_parses_sse(self):
        provider = OpenAIProvider(api_key="test-key")
        lines = [
            "data: " + json.dumps({"choices": [{"delta": {"role": "assistant"}}]}),
            "",
            "data: " + json.dumps({"choices": [{"delta": {"content": "Hel"}}]}),
            ": keep-alive",
            "data: not-json",
            "data: " + json.dumps({"choices": [{"delta": {"content": "lo"}}]}),
            "data: [DONE]",
            "data: " + json.dumps({"choices": [{"delta": {"content": "ignored"}}]}),
        ]

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = MagicMock()
            mock_instance.stream.return_value = _FakeStreamContext(_FakeStreamResponse(lines))
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value = mock_instance

            chunks = [c async for c in provider.chat_completion_stream([LLMMessage.text("user", "Hi")])]

        assert chunks == ["Hel", "lo"]
        assert mock_instance.stream.call_args.kwargs["json"]["stream"] is True


class TestGeminiProxyProvider:
    """Tests for the Gemini proxy provider."""

    def test_payload_splits_prompt_and_history(self):
        provider = GeminiProxyProvider(base_url="http://chat.test/")
        payload = provider._build_payload([
            LLMMessage.text("system", "ignored"),
            LLMMessage.text("user", "Hi"),
            LLMMessage.text("assistant", "Hello"),
            LLMMessage.text("user", "Plan a trip"),
        ])
        assert payload["prompt"] == "Plan a trip"
        assert payload["history"] == [
            {"role": "user", "text": "Hi"},
            {"role": "assistant", "text": "Hello"},
            {"role": "user", "text": "Plan a trip"},
        ]

    @pytest.mark.asyncio
    async def test_stream_yields_single_chunk(self):
        provider = GeminiProxyProvider(api_key="tok", base_url="http://chat.test")
        response = httpx.Response(
            200, json={"text": "  Rome in spring  "},
            request=httpx.Request("POST", "http://chat.test/api/ai/gemini"),
        )

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.post.return_value = response
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value = mock_instance

            chunks = [c async for c in provider.chat_completion_stream([LLMMessage.text("user", "Trip?")])]

        assert chunks == ["Rome in spring"]
        assert mock_instance.post.call_args.args[0] == "http://chat.test/api/ai/gemini"
        assert mock_instance.post.call_args.kwargs["headers"]["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_server_message_becomes_completion_error(self):
        provider = GeminiProxyProvider(base_url="http://chat.test")
        response = httpx.Response(
            429, json={"message": "Rate limited"},
            request=httpx.Request("POST", "http://chat.test/api/ai/gemini"),
        )

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.post.return_value = response
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=False)
            mock_client.return_value = mock_instance

            with pytest.raises(CompletionError, match="Rate limited"):
                await provider.chat_completion([LLMMessage.text("user", "Hi")])


class TestLLMFactory:
    """Tests for LLM provider factory."""

    def test_create_openai_provider(self):
        provider = create_llm_provider(
            provider="openai",
            api_key="test-key",
            model="gpt-4o"
        )
        assert isinstance(provider, OpenAIProvider)
        assert provider.model == "gpt-4o"

    def test_create_gemini_proxy_without_key(self):
        provider = create_llm_provider(provider="gemini_proxy", api_key=None)
        assert isinstance(provider, GeminiProxyProvider)

    def test_no_api_key_returns_none(self):
        provider = create_llm_provider(provider="openai", api_key="")
        assert provider is None

    def test_unsupported_provider_raises(self):
        with pytest.raises(ValueError, match="Unsupported"):
            create_llm_provider(provider="unsupported", api_key="key")

    def test_custom_base_url(self):
        provider = create_llm_provider(
            provider="openai",
            api_key="key",
            base_url="https://custom.api.com/v1"
        )
        assert provider.base_url == "https://custom.api.com/v1"
