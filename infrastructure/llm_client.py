"""
LLM Client: Text Completion Transport with Fault Tolerance

Thin abstraction over the OpenAI and Anthropic chat APIs that turns a
``(system_prompt, user_prompt)`` pair into raw completion text.

Responsibilities kept at this layer:
- Per-request timeout through the provider SDK's httpx transport
- Transport retries for connection blips (tenacity, exponential backoff)
- Mapping provider exceptions onto the gateway exception hierarchy
- Latency and status metrics per call

Categorized retries (rate limits, server errors, malformed output) are
the gateway's concern; the two layers compose.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from loguru import logger
from openai import AsyncOpenAI
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import LLMSettings
from core.exceptions import (
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMException,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from infrastructure.monitoring import MetricsCollector

# Connection-level failures worth repeating before the gateway sees them
TRANSPORT_ERRORS = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    httpx.TimeoutException,
    httpx.ConnectError,
)


class ModelProvider(str, Enum):
    """Enumeration of supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class LLMResponse:
    """Completion text plus call metadata."""

    content: str
    model: str
    provider: ModelProvider
    latency_ms: float
    finish_reason: Optional[str] = None
    usage: TokenUsage = field(default_factory=TokenUsage)


class LLMClient:
    """
    Completion client for the configured provider.

    Usage:
        client = LLMClient(settings.llm)
        response = await client.complete(system_prompt, user_prompt)
    """

    def __init__(
        self,
        config: LLMSettings,
        metrics: Optional[MetricsCollector] = None,
        openai_client: Optional[Any] = None,
        anthropic_client: Optional[Any] = None,
    ):
        """
        Initialize provider SDK clients.

        Args:
            config: Provider, credentials, sampling and transport settings
            metrics: Optional Prometheus collector
            openai_client: Pre-built OpenAI client (tests)
            anthropic_client: Pre-built Anthropic client (tests)
        """
        self.config = config
        self.provider = ModelProvider(config.provider)
        self.metrics = metrics
        timeout = httpx.Timeout(config.request_timeout)

        self.openai_client = openai_client
        if self.openai_client is None and config.openai_api_key:
            self.openai_client = AsyncOpenAI(
                api_key=config.openai_api_key.get_secret_value(),
                organization=config.openai_org_id,
                timeout=timeout,
                max_retries=0,  # Transport retries are handled below
            )

        self.anthropic_client = anthropic_client
        if self.anthropic_client is None and config.anthropic_api_key:
            self.anthropic_client = AsyncAnthropic(
                api_key=config.anthropic_api_key.get_secret_value(),
                timeout=timeout,
                max_retries=0,
            )

        logger.info(
            f"LLMClient initialized | provider={self.provider.value} | model={config.model} "
            f"| timeout={config.request_timeout}s | transport_retries={config.transport_max_retries}"
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """
        Generate a completion for the prompt pair.

        Returns:
            LLMResponse with non-empty content

        Raises:
            LLMTimeoutError: On timeout after transport retries
            LLMConnectionError: When the provider is unreachable
            LLMRateLimitError: When the provider throttles the request
            LLMProviderError: On any other provider error status
            LLMEmptyResponseError: When the completion has no text
        """
        temperature = self.config.temperature if temperature is None else temperature
        max_tokens = self.config.max_tokens if max_tokens is None else max_tokens
        model = self.config.model

        start_time = time.perf_counter()
        status = "success"
        try:
            content, usage, finish_reason = await self._execute_with_retry(
                system_prompt, user_prompt, model, temperature, max_tokens
            )
        except LLMException as e:
            status = type(e).__name__
            raise
        finally:
            latency = time.perf_counter() - start_time
            if self.metrics:
                self.metrics.record_llm_api_call(model, self.provider.value, status, latency)

        if not content or not content.strip():
            raise LLMEmptyResponseError()

        return LLMResponse(
            content=content,
            model=model,
            provider=self.provider,
            latency_ms=latency * 1000,
            finish_reason=finish_reason,
            usage=usage,
        )

    async def _execute_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> tuple:
        """Call the provider, repeating only connection-level failures."""

        @retry(
            stop=stop_after_attempt(self.config.transport_max_retries + 1),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(TRANSPORT_ERRORS),
            before_sleep=before_sleep_log(logger, "WARNING"),
            reraise=True,
        )
        async def _execute():
            if self.provider == ModelProvider.OPENAI:
                return await self._call_openai(system_prompt, user_prompt, model, temperature, max_tokens)
            return await self._call_anthropic(system_prompt, user_prompt, model, temperature, max_tokens)

        try:
            return await _execute()
        except (openai.APITimeoutError, anthropic.APITimeoutError, httpx.TimeoutException) as e:
            raise LLMTimeoutError(
                f"Request timeout: {e}", timeout_seconds=self.config.request_timeout, cause=e
            ) from e
        except (openai.APIConnectionError, anthropic.APIConnectionError, httpx.ConnectError) as e:
            raise LLMConnectionError(f"Connection error: {e}", cause=e) from e
        except (openai.RateLimitError, anthropic.RateLimitError) as e:
            raise LLMRateLimitError(f"Rate limit exceeded: {e}", cause=e) from e
        except (openai.APIStatusError, anthropic.APIStatusError) as e:
            raise LLMProviderError(
                f"Provider error: {e}", status_code=e.status_code, cause=e
            ) from e
        except (openai.OpenAIError, anthropic.AnthropicError) as e:
            raise LLMProviderError(f"Provider error: {e}", cause=e) from e

    async def _call_openai(
        self, system_prompt: str, user_prompt: str, model: str, temperature: float, max_tokens: int
    ) -> tuple:
        if not self.openai_client:
            raise LLMProviderError("OpenAI API key not configured")

        response = await self.openai_client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice else None
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(response.usage.prompt_tokens, response.usage.completion_tokens)
        return content, usage, choice.finish_reason if choice else None

    async def _call_anthropic(
        self, system_prompt: str, user_prompt: str, model: str, temperature: float, max_tokens: int
    ) -> tuple:
        if not self.anthropic_client:
            raise LLMProviderError("Anthropic API key not configured")

        response = await self.anthropic_client.messages.create(
            model=model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = TokenUsage(response.usage.input_tokens, response.usage.output_tokens)
        return content, usage, response.stop_reason

    async def close(self) -> None:
        for client in (self.openai_client, self.anthropic_client):
            if client is not None and hasattr(client, "close"):
                await client.close()
