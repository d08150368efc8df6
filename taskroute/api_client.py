"""
Async streaming LLM clients for the remote service.

Supports:
- Anthropic (Claude Sonnet, Haiku)
- OpenAI (GPT-4o, GPT-4o-mini)

Provider SDK exceptions are translated into routing errors here, so nothing
above this module needs to know which SDK is in use.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anthropic
import openai
from dotenv import load_dotenv

from .types import (
    CloudServiceUnavailableError,
    InvalidCloudResponseError,
    RateLimitExceededError,
    RemoteTimeoutError,
    RoutingError,
)

logger = logging.getLogger(__name__)

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

DEFAULT_RETRY_AFTER = 1.0


class Provider(Enum):
    """LLM provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class APIResponse:
    """Complete (non-streamed) response from an LLM API."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: Provider
    stop_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """A chunk from a streaming response. The final chunk carries usage."""

    text: str
    is_final: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None


MODEL_REGISTRY: dict[str, tuple[Provider, str]] = {
    "sonnet": (Provider.ANTHROPIC, "claude-sonnet-4-20250514"),
    "haiku": (Provider.ANTHROPIC, "claude-haiku-4-5-20251001"),
    "haiku-3": (Provider.ANTHROPIC, "claude-3-haiku-20240307"),
    "gpt-4o": (Provider.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (Provider.OPENAI, "gpt-4o-mini"),
    "mini": (Provider.OPENAI, "gpt-4o-mini"),
}


def resolve_model(model: str) -> tuple[Provider, str]:
    """Resolve model shorthand to (provider, full_model_id)."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]
    if model.startswith("claude"):
        return (Provider.ANTHROPIC, model)
    if model.startswith(("gpt-", "o1", "o3", "o4")):
        return (Provider.OPENAI, model)
    return (Provider.ANTHROPIC, model)


def _retry_after(error: anthropic.APIStatusError | openai.APIStatusError) -> float:
    try:
        return float(error.response.headers.get("retry-after", DEFAULT_RETRY_AFTER))
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER


def translate_error(error: Exception) -> RoutingError:
    """
    Map a provider SDK exception onto the routing error taxonomy.

    Timeouts and rate limits become retryable errors. Connection failures,
    5xx responses and credential problems mean the service is unavailable.
    Anything else the API rejected is an invalid response.
    """
    if isinstance(error, RoutingError):
        return error
    if isinstance(error, (anthropic.APITimeoutError, openai.APITimeoutError)):
        return RemoteTimeoutError(f"Provider request timed out: {error}")
    if isinstance(error, (anthropic.RateLimitError, openai.RateLimitError)):
        return RateLimitExceededError(_retry_after(error), f"Provider rate limit: {error}")
    if isinstance(error, (anthropic.APIConnectionError, openai.APIConnectionError)):
        return CloudServiceUnavailableError(f"Cannot reach provider: {error}")
    if isinstance(
        error,
        (
            anthropic.AuthenticationError,
            anthropic.PermissionDeniedError,
            openai.AuthenticationError,
            openai.PermissionDeniedError,
        ),
    ):
        return CloudServiceUnavailableError(f"Provider rejected credentials: {error}")
    if isinstance(error, (anthropic.APIStatusError, openai.APIStatusError)):
        if error.status_code >= 500:
            return CloudServiceUnavailableError(f"Provider error {error.status_code}: {error}")
        return InvalidCloudResponseError(f"Provider rejected request ({error.status_code}): {error}")
    return InvalidCloudResponseError(f"Unexpected provider failure: {error}")


_PROVIDER_ERRORS = (anthropic.APIError, openai.APIError)


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    provider: Provider
    default_model: str

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> APIResponse:
        """Get completion from LLM."""
        ...

    @abstractmethod
    def complete_streaming(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> AsyncGenerator[StreamChunk, None]:
        """
        Get streaming completion from LLM.

        The HTTP stream is closed when the generator is closed, including
        when a consumer abandons it early.
        """
        ...


class AnthropicClient(BaseLLMClient):
    """Anthropic Claude API client."""

    provider = Provider.ANTHROPIC
    default_model = "claude-haiku-4-5-20251001"

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("Anthropic API key required. Set ANTHROPIC_API_KEY environment variable.")
        # Retries are owned by the router
        self.client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=timeout, max_retries=0)

    def _request_params(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str | None,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": model or self.default_model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            params["system"] = system
        return params

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> APIResponse:
        params = self._request_params(messages, system, model, max_tokens, temperature)
        try:
            response = await self.client.messages.create(**params)
        except _PROVIDER_ERRORS as e:
            raise translate_error(e) from e

        content = "".join(block.text for block in response.content if block.type == "text")
        return APIResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=params["model"],
            provider=Provider.ANTHROPIC,
            stop_reason=response.stop_reason,
        )

    async def complete_streaming(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> AsyncGenerator[StreamChunk, None]:
        params = self._request_params(messages, system, model, max_tokens, temperature)
        try:
            async with self.client.messages.stream(**params) as stream:
                async for text in stream.text_stream:
                    yield StreamChunk(text=text)
                final_message = await stream.get_final_message()
        except _PROVIDER_ERRORS as e:
            raise translate_error(e) from e

        yield StreamChunk(
            text="",
            is_final=True,
            input_tokens=final_message.usage.input_tokens,
            output_tokens=final_message.usage.output_tokens,
            model=params["model"],
        )


class OpenAIClient(BaseLLMClient):
    """OpenAI GPT API client."""

    provider = Provider.OPENAI
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key required. Set OPENAI_API_KEY environment variable.")
        self.client = openai.AsyncOpenAI(api_key=self.api_key, timeout=timeout, max_retries=0)

    def _request_params(
        self,
        messages: list[dict[str, str]],
        system: str | None,
        model: str | None,
        max_tokens: int,
        temperature: float,
    ) -> dict[str, Any]:
        model = model or self.default_model
        # OpenAI uses system message in messages array
        full_messages = []
        if system:
            full_messages.append({"role": "system", "content": system})
        full_messages.extend(messages)

        params: dict[str, Any] = {"model": model, "messages": full_messages, "temperature": temperature}
        # Reasoning models take max_completion_tokens instead of max_tokens
        if model.startswith(("o1", "o3", "o4")):
            params["max_completion_tokens"] = max_tokens
        else:
            params["max_tokens"] = max_tokens
        return params

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> APIResponse:
        params = self._request_params(messages, system, model, max_tokens, temperature)
        try:
            response = await self.client.chat.completions.create(**params)
        except _PROVIDER_ERRORS as e:
            raise translate_error(e) from e

        return APIResponse(
            content=response.choices[0].message.content or "",
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=params["model"],
            provider=Provider.OPENAI,
            stop_reason=response.choices[0].finish_reason,
        )

    async def complete_streaming(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> AsyncGenerator[StreamChunk, None]:
        params = self._request_params(messages, system, model, max_tokens, temperature)
        input_tokens = 0
        output_tokens = 0
        try:
            stream = await self.client.chat.completions.create(
                **params, stream=True, stream_options={"include_usage": True}
            )
            async with stream:
                async for chunk in stream:
                    if chunk.choices and chunk.choices[0].delta.content:
                        yield StreamChunk(text=chunk.choices[0].delta.content)
                    if chunk.usage:
                        input_tokens = chunk.usage.prompt_tokens
                        output_tokens = chunk.usage.completion_tokens
        except _PROVIDER_ERRORS as e:
            raise translate_error(e) from e

        yield StreamChunk(
            text="",
            is_final=True,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=params["model"],
        )


def create_client(provider: Provider | str, api_key: str | None = None, timeout: float | None = None) -> BaseLLMClient:
    """
    Build the client for a provider.

    Raises:
        ValueError: If the provider's API key is not configured
    """
    provider = Provider(provider)
    if provider is Provider.OPENAI:
        return OpenAIClient(api_key=api_key, timeout=timeout)
    return AnthropicClient(api_key=api_key, timeout=timeout)


__all__ = [
    "APIResponse",
    "AnthropicClient",
    "BaseLLMClient",
    "MODEL_REGISTRY",
    "OpenAIClient",
    "Provider",
    "StreamChunk",
    "create_client",
    "resolve_model",
    "translate_error",
]
