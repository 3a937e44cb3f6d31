"""
Unit Tests for the LLM Completion Client
========================================

Provider SDK clients are replaced by mocks; these tests cover request
shaping, response decoding and the mapping of SDK exceptions onto the
gateway exception hierarchy.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from core.exceptions import (
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMProviderError,
    LLMRateLimitError,
)
from infrastructure.llm_client import LLMClient, ModelProvider

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _openai_completion(content, finish_reason="stop"):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)
        ],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=40),
    )


@pytest.fixture
def openai_mock():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_openai_completion('{"ok": true}'))
    client.close = AsyncMock()
    return client


@pytest.fixture
def client(llm_settings, openai_mock, metrics):
    return LLMClient(llm_settings, metrics=metrics, openai_client=openai_mock)


class TestOpenAI:
    @pytest.mark.asyncio
    async def test_completion(self, client, openai_mock, metrics):
        response = await client.complete("system", "user", temperature=0.1, max_tokens=500)

        assert response.content == '{"ok": true}'
        assert response.provider is ModelProvider.OPENAI
        assert response.usage.total_tokens == 160
        assert response.finish_reason == "stop"

        kwargs = openai_mock.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 500
        assert (
            metrics.registry.get_sample_value(
                "llm_api_requests_total",
                {"model": client.config.model, "provider": "openai", "status": "success"},
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_settings_supply_sampling_defaults(self, client, openai_mock, llm_settings):
        await client.complete("system", "user")

        kwargs = openai_mock.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == llm_settings.temperature
        assert kwargs["max_tokens"] == llm_settings.max_tokens

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "   \n"])
    async def test_blank_completion_is_an_error(self, client, openai_mock, content):
        openai_mock.chat.completions.create.return_value = _openai_completion(content)

        with pytest.raises(LLMEmptyResponseError):
            await client.complete("system", "user")

    @pytest.mark.asyncio
    async def test_rate_limit_is_mapped(self, client, openai_mock):
        openai_mock.chat.completions.create.side_effect = openai.RateLimitError(
            message="Rate limit reached",
            response=httpx.Response(429, request=REQUEST),
            body=None,
        )

        with pytest.raises(LLMRateLimitError) as exc_info:
            await client.complete("system", "user")

        assert exc_info.value.status_code == 429
        # Throttling is left to the gateway policy, not repeated here
        assert openai_mock.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_status_errors_keep_status_code(self, client, openai_mock):
        openai_mock.chat.completions.create.side_effect = openai.InternalServerError(
            message="Service Unavailable",
            response=httpx.Response(503, request=REQUEST),
            body=None,
        )

        with pytest.raises(LLMProviderError) as exc_info:
            await client.complete("system", "user")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried_then_mapped(self, llm_settings, openai_mock):
        settings = llm_settings.model_copy(update={"transport_max_retries": 1})
        client = LLMClient(settings, openai_client=openai_mock)
        openai_mock.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)

        with pytest.raises(LLMConnectionError) as exc_info:
            await client.complete("system", "user")

        assert exc_info.value.socket_code == "ECONNREFUSED"
        assert openai_mock.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_connection_error_recovers(self, llm_settings, openai_mock):
        settings = llm_settings.model_copy(update={"transport_max_retries": 1})
        client = LLMClient(settings, openai_client=openai_mock)
        openai_mock.chat.completions.create.side_effect = [
            openai.APIConnectionError(request=REQUEST),
            _openai_completion('{"grammarSuggestions": []}'),
        ]

        response = await client.complete("system", "user")

        assert response.content == '{"grammarSuggestions": []}'

    @pytest.mark.asyncio
    async def test_close(self, client, openai_mock):
        await client.close()

        openai_mock.close.assert_awaited_once()


class TestAnthropic:
    @pytest.fixture
    def anthropic_mock(self):
        client = MagicMock()
        client.messages.create = AsyncMock(
            return_value=SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text='{"styleSuggestions": '),
                    SimpleNamespace(type="text", text="[]}"),
                ],
                usage=SimpleNamespace(input_tokens=80, output_tokens=20),
                stop_reason="end_turn",
            )
        )
        return client

    @pytest.mark.asyncio
    async def test_completion_joins_text_blocks(self, llm_settings, anthropic_mock):
        settings = llm_settings.model_copy(update={"provider": "anthropic"})
        client = LLMClient(settings, anthropic_client=anthropic_mock)

        response = await client.complete("system", "user")

        assert response.content == '{"styleSuggestions": []}'
        assert response.provider is ModelProvider.ANTHROPIC
        assert response.usage.total_tokens == 100
        kwargs = anthropic_mock.messages.create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]
        assert kwargs["model"] == settings.anthropic_model

    @pytest.mark.asyncio
    async def test_missing_credentials(self, llm_settings):
        settings = llm_settings.model_copy(update={"provider": "anthropic"})
        client = LLMClient(settings)

        with pytest.raises(LLMProviderError, match="Anthropic API key not configured"):
            await client.complete("system", "user")
