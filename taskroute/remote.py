"""
Remote LLM service.

RemoteService is the contract the router depends on. LLMRemoteService
implements it on top of the provider clients in api_client.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncGenerator, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError, field_validator

from .api_client import BaseLLMClient, create_client, resolve_model
from .classifier import estimate_duration
from .config import RemoteConfig
from .cost_tracker import CostComponent, CostTracker
from .prompts import CLASSIFY_SYSTEM_PROMPT, build_classify_prompt, build_system_prompt
from .types import (
    ClassificationResult,
    InvalidCloudResponseError,
    ProcessingRoute,
    TaskComplexity,
    TaskType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteChunk:
    """Piece of a streamed remote answer. The final chunk carries usage."""

    text: str
    is_final: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@runtime_checkable
class RemoteService(Protocol):
    """
    Remote collaborator used by the router.

    Implementations raise CloudServiceUnavailableError,
    RateLimitExceededError, RemoteTimeoutError or InvalidCloudResponseError.
    """

    async def classify_remote(self, text: str, context: str | None = None) -> ClassificationResult: ...

    def execute_stream(
        self, text: str, classification: ClassificationResult
    ) -> AsyncGenerator[RemoteChunk, None]: ...


class RemoteClassification(BaseModel):
    """Shape of the JSON a remote model returns when classifying."""

    task_type: TaskType
    confidence: float = Field(ge=0.0, le=1.0)
    complexity: TaskComplexity = TaskComplexity.SIMPLE
    parameters: dict[str, str] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify_parameters(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items() if v is not None}
        return value


_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_classification(response: str, hybrid_threshold: float = 0.70) -> ClassificationResult:
    """
    Parse a remote classification reply.

    Raises:
        InvalidCloudResponseError: If the reply holds no valid classification
    """
    json_match = _JSON_OBJECT.search(response)
    if not json_match:
        raise InvalidCloudResponseError(f"No JSON found in response: {response[:200]}")

    try:
        data = RemoteClassification.model_validate(json.loads(json_match.group()))
    except json.JSONDecodeError as e:
        raise InvalidCloudResponseError(f"Invalid JSON in response: {e}") from e
    except ValidationError as e:
        raise InvalidCloudResponseError(f"Classification failed validation: {e.error_count()} errors") from e

    if data.confidence >= hybrid_threshold:
        suggested_route = data.complexity.default_route
    else:
        suggested_route = ProcessingRoute.REMOTE
    return ClassificationResult(
        task_type=data.task_type,
        confidence=data.confidence,
        parameters=data.parameters,
        complexity=data.complexity,
        suggested_route=suggested_route,
        requires_confirmation=data.task_type in (TaskType.FILE_OPERATION, TaskType.AUTOMATION),
        estimated_duration=estimate_duration(data.task_type, data.complexity),
        signals=("remote",),
    )


class LLMRemoteService:
    """
    RemoteService backed by an Anthropic or OpenAI model.

    Each request uses the model mapped to its classification complexity,
    falling back to `model`.

    Example:
        service = LLMRemoteService.from_config(RouterConfig.load().remote)
        async for chunk in service.execute_stream(text, classification):
            ...
    """

    def __init__(
        self,
        client: BaseLLMClient,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        hybrid_threshold: float = 0.70,
        cost_tracker: CostTracker | None = None,
        models_by_complexity: Mapping[TaskComplexity, str] | None = None,
    ):
        self.client = client
        self.model = model or client.default_model
        self.models_by_complexity = dict(models_by_complexity or {})
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.hybrid_threshold = hybrid_threshold
        self.cost_tracker = cost_tracker

    @classmethod
    def from_config(
        cls,
        config: RemoteConfig,
        hybrid_threshold: float = 0.70,
        cost_tracker: CostTracker | None = None,
    ) -> LLMRemoteService:
        """
        Build a service for the configured provider and model.

        Raises:
            ValueError: If the provider's API key is not set
        """
        provider, model = resolve_model(config.model)
        if provider.value != config.provider:
            logger.warning(f"Model {config.model} belongs to {provider.value}, not {config.provider}")
        client = create_client(provider, timeout=config.timeout)

        by_complexity: dict[TaskComplexity, str] = {}
        for level, name in config.models_by_complexity.items():
            mapped_provider, mapped_model = resolve_model(name)
            if mapped_provider is not provider:
                logger.warning(
                    f"Ignoring {level} model {name}: it belongs to {mapped_provider.value}, not {provider.value}"
                )
                continue
            by_complexity[TaskComplexity(level)] = mapped_model

        return cls(
            client,
            model=model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            hybrid_threshold=hybrid_threshold,
            cost_tracker=cost_tracker,
            models_by_complexity=by_complexity,
        )

    def model_for(self, complexity: TaskComplexity) -> str:
        return self.models_by_complexity.get(complexity, self.model)

    async def classify_remote(self, text: str, context: str | None = None) -> ClassificationResult:
        response = await self.client.complete(
            messages=[{"role": "user", "content": build_classify_prompt(text, context)}],
            system=CLASSIFY_SYSTEM_PROMPT,
            model=self.model,
            max_tokens=256,
            temperature=0.0,
        )
        if self.cost_tracker is not None:
            self.cost_tracker.record_usage(
                response.input_tokens, response.output_tokens, response.model, CostComponent.CLASSIFY
            )
        result = parse_classification(response.content, self.hybrid_threshold)
        logger.debug(f"Remote classified as {result.task_type.value} ({result.confidence:.2f})")
        return result

    async def execute_stream(
        self, text: str, classification: ClassificationResult
    ) -> AsyncGenerator[RemoteChunk, None]:
        model = self.model_for(classification.complexity)
        logger.debug(f"Using {model} for {classification.complexity.value} {classification.task_type.value} task")
        stream = self.client.complete_streaming(
            messages=[{"role": "user", "content": text}],
            system=build_system_prompt(classification),
            model=model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        async with aclosing(stream):
            async for chunk in stream:
                yield RemoteChunk(
                    text=chunk.text,
                    is_final=chunk.is_final,
                    input_tokens=chunk.input_tokens,
                    output_tokens=chunk.output_tokens,
                    model=chunk.model or (model if chunk.is_final else None),
                )


__all__ = [
    "LLMRemoteService",
    "RemoteChunk",
    "RemoteClassification",
    "RemoteService",
    "parse_classification",
]
