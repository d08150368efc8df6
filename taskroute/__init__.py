"""
taskroute: task classification and hybrid routing for a personal assistant.

Takes a free-text request, works out what kind of task it is, and runs it
on the device, on a remote LLM, or both:
- Deterministic rule-based classification with explainable confidence
- Confidence-threshold routing with hybrid escalation
- TTL/LRU response cache
- Remote health breaker, request budget and retry with backoff
- Degraded local fallback when the remote service is unavailable
"""

__version__ = "0.1.0"

# Core routing
from .classifier import LocalClassifier
from .router import HealthStatus, HybridRouter, SystemHealth

# Collaborators
from .cache import CacheStatistics, ResponseCache
from .config import RouterConfig
from .cost_tracker import CostTracker
from .executors import (
    CalculationExecutor,
    ExecutorRegistry,
    HelpExecutor,
    LocalExecutor,
    SystemQueryExecutor,
)
from .history_log import JsonlHistorySink, ResultSink
from .normalize import fingerprint, normalize_text
from .rate_controller import ControllerStatus, RemoteHealthController
from .remote import LLMRemoteService, RemoteChunk, RemoteService
from .statistics import RoutingStatistics, StatisticsAggregator

# Types and errors
from .types import (
    CacheError,
    ClassificationResult,
    CloudServiceUnavailableError,
    ErrorKind,
    FallbackExhaustedError,
    InternalRoutingError,
    InvalidCloudResponseError,
    LocalExecutionError,
    ProcessingRoute,
    RateLimitExceededError,
    RemoteTimeoutError,
    RoutingError,
    TaskComplexity,
    TaskProcessingResult,
    TaskResult,
    TaskType,
)

__all__ = [
    "__version__",
    # Core routing
    "HealthStatus",
    "HybridRouter",
    "LocalClassifier",
    "SystemHealth",
    # Collaborators
    "CacheStatistics",
    "CalculationExecutor",
    "ControllerStatus",
    "CostTracker",
    "ExecutorRegistry",
    "HelpExecutor",
    "JsonlHistorySink",
    "LLMRemoteService",
    "LocalExecutor",
    "RemoteChunk",
    "RemoteHealthController",
    "RemoteService",
    "ResponseCache",
    "ResultSink",
    "RouterConfig",
    "RoutingStatistics",
    "StatisticsAggregator",
    "SystemQueryExecutor",
    "fingerprint",
    "normalize_text",
    # Types and errors
    "CacheError",
    "ClassificationResult",
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
