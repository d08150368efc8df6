"""
Shared type definitions for taskroute.

Task taxonomy, classification and processing results, local executor
results, and the routing error hierarchy.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class TaskType(str, Enum):
    """Kind of operation an utterance asks for."""

    FILE_OPERATION = "file_operation"
    SYSTEM_QUERY = "system_query"
    APP_CONTROL = "app_control"
    TEXT_PROCESSING = "text_processing"
    CALCULATION = "calculation"
    WEB_QUERY = "web_query"
    AUTOMATION = "automation"
    SETTINGS = "settings"
    HELP = "help"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class ProcessingRoute(str, Enum):
    """Where a task gets executed."""

    LOCAL = "local"
    REMOTE = "remote"
    HYBRID = "hybrid"  # local first, remote if local is not good enough


class TaskComplexity(str, Enum):
    """Rough effort class of a task."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    ADVANCED = "advanced"

    @property
    def default_route(self) -> ProcessingRoute:
        """Preferred route before confidence is known."""
        if self is TaskComplexity.SIMPLE:
            return ProcessingRoute.LOCAL
        if self is TaskComplexity.MODERATE:
            return ProcessingRoute.HYBRID
        return ProcessingRoute.REMOTE

    @property
    def duration_multiplier(self) -> float:
        return _COMPLEXITY_MULTIPLIERS[self]


_COMPLEXITY_MULTIPLIERS = {
    TaskComplexity.SIMPLE: 1.0,
    TaskComplexity.MODERATE: 2.0,
    TaskComplexity.COMPLEX: 4.0,
    TaskComplexity.ADVANCED: 8.0,
}


@dataclass(frozen=True)
class ClassificationResult:
    """
    Typed, parameterized description of a task.

    Produced fresh per request and never mutated; use dataclasses.replace
    to derive a new one.
    """

    task_type: TaskType
    confidence: float  # 0.0 to 1.0
    parameters: Mapping[str, str] = field(default_factory=dict)
    complexity: TaskComplexity = TaskComplexity.SIMPLE
    suggested_route: ProcessingRoute = ProcessingRoute.REMOTE
    requires_confirmation: bool = False
    estimated_duration: float = 1.0  # seconds
    signals: tuple[str, ...] = ()  # rules/keywords that fired

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))
        object.__setattr__(self, "signals", tuple(self.signals))

    @classmethod
    def unknown(cls) -> ClassificationResult:
        """The zero-confidence result used when no rule matches."""
        return cls(
            task_type=TaskType.UNKNOWN,
            confidence=0.0,
            complexity=TaskComplexity.SIMPLE,
            suggested_route=ProcessingRoute.REMOTE,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_type": self.task_type.value,
            "confidence": self.confidence,
            "parameters": dict(self.parameters),
            "complexity": self.complexity.value,
            "suggested_route": self.suggested_route.value,
            "requires_confirmation": self.requires_confirmation,
            "estimated_duration": self.estimated_duration,
            "signals": list(self.signals),
        }


@dataclass(frozen=True)
class TaskResult:
    """Result of a local executor run."""

    success: bool
    output: str
    error_message: str | None = None
    confidence: float | None = None  # executor's own certainty, if it has one
    execution_time_ms: float = 0.0
    follow_up_suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TaskProcessingResult:
    """
    Final outcome of routing one utterance.

    `success` is False if and only if `error` is set.
    """

    input: str
    classification: ClassificationResult
    route_taken: ProcessingRoute
    success: bool
    output: str
    execution_time_ms: float = 0.0
    tokens_used: int = 0
    cost_usd: float = 0.0
    cache_hit: bool = False
    error: RoutingError | None = None
    degraded: bool = False
    model: str | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.success == (self.error is not None):
            raise ValueError(
                f"success={self.success} is inconsistent with error={self.error!r}"
            )
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "input": self.input,
            "classification": self.classification.to_dict(),
            "route_taken": self.route_taken.value,
            "success": self.success,
            "output": self.output,
            "execution_time_ms": self.execution_time_ms,
            "tokens_used": self.tokens_used,
            "cost_usd": self.cost_usd,
            "cache_hit": self.cache_hit,
            "error": self.error.to_dict() if self.error else None,
            "degraded": self.degraded,
            "model": self.model,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }


# Routing error hierarchy


class ErrorKind(str, Enum):
    """Stable identifiers for routing failures."""

    CLOUD_SERVICE_UNAVAILABLE = "cloud_service_unavailable"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    TIMEOUT = "timeout"
    INVALID_CLOUD_RESPONSE = "invalid_cloud_response"
    CACHE_ERROR = "cache_error"
    FALLBACK_EXHAUSTED = "fallback_exhausted"
    INTERNAL_ERROR = "internal_error"
    LOCAL_EXECUTION_FAILED = "local_execution_failed"


class RoutingError(Exception):
    """Base class for routing errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    user_message: str = "Something went wrong while handling your request."
    recovery_suggestion: str = "Please try again."

    @property
    def retryable(self) -> bool:
        """Whether retrying the same remote call may succeed."""
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "user_message": self.user_message,
            "recovery_suggestion": self.recovery_suggestion,
        }


class CloudServiceUnavailableError(RoutingError):
    """Remote service is down or unreachable."""

    kind = ErrorKind.CLOUD_SERVICE_UNAVAILABLE
    user_message = "The cloud assistant is currently unavailable."
    recovery_suggestion = "Your request will be handled on this device where possible."

    def __init__(self, message: str = "Cloud service is unavailable"):
        super().__init__(message)


class RateLimitExceededError(RoutingError):
    """Request or token budget exhausted; retry after `wait_seconds`."""

    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    user_message = "Too many requests were sent to the cloud assistant."
    recovery_suggestion = "Wait a moment or try a simpler request."

    def __init__(self, wait_seconds: float, message: str | None = None):
        self.wait_seconds = max(0.0, wait_seconds)
        super().__init__(message or f"Rate limit exceeded, retry in {self.wait_seconds:.0f}s")

    @property
    def retryable(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["wait_seconds"] = self.wait_seconds
        return data


class RemoteTimeoutError(RoutingError):
    """Remote call did not complete in time."""

    kind = ErrorKind.TIMEOUT
    user_message = "The cloud assistant took too long to respond."
    recovery_suggestion = "Check your internet connection and try again."

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return True


class InvalidCloudResponseError(RoutingError):
    """Remote answered with something that could not be used."""

    kind = ErrorKind.INVALID_CLOUD_RESPONSE
    user_message = "The cloud assistant returned an unexpected response."
    recovery_suggestion = "Try rephrasing your request."


class CacheError(RoutingError):
    """Cache could not serve or store an entry."""

    kind = ErrorKind.CACHE_ERROR
    user_message = "There was a problem with stored answers."
    recovery_suggestion = "Stored answers will be cleared automatically."


class InternalRoutingError(RoutingError):
    """Unexpected failure inside the router or an executor."""

    kind = ErrorKind.INTERNAL_ERROR
    user_message = "An internal error occurred."
    recovery_suggestion = "Please restart the assistant if the problem persists."


class LocalExecutionError(RoutingError):
    """A local executor reported that it could not do the task."""

    kind = ErrorKind.LOCAL_EXECUTION_FAILED
    user_message = "The task could not be completed on this device."
    recovery_suggestion = "Check the request details and try again."


class FallbackExhaustedError(RoutingError):
    """
    Neither the remote service nor a local executor can handle the task.

    The only routing error that is surfaced to the user as-is.
    """

    kind = ErrorKind.FALLBACK_EXHAUSTED
    user_message = (
        "I can't handle this request right now: the cloud assistant is "
        "unavailable and it can't be done on this device."
    )
    recovery_suggestion = "Try again once connectivity is restored."

    def __init__(self, task_type: TaskType, cause: RoutingError | None = None):
        self.task_type = task_type
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"No route left for {task_type.value} task{reason}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["cause"] = self.cause.kind.value if self.cause else None
        return data


__all__ = [
    "ClassificationResult",
    "CacheError",
    "CloudServiceUnavailableError",
    "ErrorKind",
    "FallbackExhaustedError",
    "InternalRoutingError",
    "InvalidCloudResponseError",
    "LocalExecutionError",
    "ProcessingRoute",
    "RateLimitExceededError",
    "RemoteTimeoutError",
    "RoutingError",
    "TaskComplexity",
    "TaskProcessingResult",
    "TaskResult",
    "TaskType",
]
