"""
Hybrid router: decides where each request runs and runs it there.

Per request:

    cache lookup -> hit: return stored result
                 -> miss: classify -> decide route -> local | remote | hybrid
                          -> cache write-back, statistics, history sink

Failures never escape route(). They come back as a failed
TaskProcessingResult carrying a RoutingError. The one exception is
asyncio.CancelledError, which always propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .cache import ResponseCache
from .classifier import LocalClassifier
from .config import RouterConfig
from .cost_tracker import CostComponent, CostTracker, estimate_tokens
from .executors import ExecutorRegistry
from .history_log import ResultSink
from .normalize import fingerprint
from .rate_controller import RemoteHealthController
from .remote import RemoteService
from .statistics import RoutingStatistics, StatisticsAggregator
from .types import (
    ClassificationResult,
    CloudServiceUnavailableError,
    FallbackExhaustedError,
    InternalRoutingError,
    InvalidCloudResponseError,
    LocalExecutionError,
    ProcessingRoute,
    RateLimitExceededError,
    RemoteTimeoutError,
    RoutingError,
    TaskProcessingResult,
    TaskResult,
    TaskType,
)

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: HealthStatus
    detail: str = ""


class SystemHealth(BaseModel):
    """Health of local processing, the remote service and the cache."""

    status: HealthStatus
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    checked_at: float = Field(default_factory=time.time)


@dataclass
class _RemoteAnswer:
    output: str
    tokens: int
    cost_usd: float
    model: str | None
    elapsed_ms: float
    attempts: int


@dataclass
class _LocalAnswer:
    result: TaskResult | None
    error: RoutingError | None
    elapsed_ms: float

    @property
    def ok(self) -> bool:
        return self.error is None


class HybridRouter:
    """
    Routes utterances to local executors, the remote service, or both.

    All collaborators are injected; anything not given is built from the
    config. Construct one router per process and share it between tasks.

    Example:
        router = HybridRouter(remote=LLMRemoteService.from_config(config.remote))
        result = await router.route("copy report.pdf to Desktop")
    """

    def __init__(
        self,
        config: RouterConfig | None = None,
        classifier: LocalClassifier | None = None,
        cache: ResponseCache | None = None,
        controller: RemoteHealthController | None = None,
        statistics: StatisticsAggregator | None = None,
        executors: ExecutorRegistry | None = None,
        remote: RemoteService | None = None,
        cost_tracker: CostTracker | None = None,
        sink: ResultSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config or RouterConfig()
        self.classifier = classifier or LocalClassifier(hybrid_threshold=self.config.thresholds.hybrid)
        self.cache = cache or ResponseCache(self.config.cache)
        self.controller = controller or RemoteHealthController(self.config.controller)
        self.statistics = statistics or StatisticsAggregator()
        self.executors = executors if executors is not None else ExecutorRegistry.with_builtins()
        self.executors.freeze()
        self.remote = remote
        self.cost_tracker = cost_tracker or CostTracker()
        self.sink = sink
        self._sleep = sleep
        self._clock = clock

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000

    # Route decision

    def decide_route(self, classification: ClassificationResult) -> ProcessingRoute:
        """
        Pick a route from confidence alone.

        Lower bounds are inclusive: exactly the local threshold is local,
        exactly the hybrid threshold is hybrid.
        """
        thresholds = self.config.thresholds
        confidence = classification.confidence
        if confidence >= thresholds.local:
            if classification.task_type in self.executors:
                return ProcessingRoute.LOCAL
            return ProcessingRoute.REMOTE
        if confidence >= thresholds.hybrid:
            return ProcessingRoute.HYBRID
        return ProcessingRoute.REMOTE

    # Entry point

    async def route(self, text: str, *, timeout: float | None = None) -> TaskProcessingResult:
        """
        Classify and execute one utterance.

        Args:
            text: Raw user input
            timeout: Seconds allowed for the remote step, retries included;
                defaults to remote.timeout from the config

        Returns:
            TaskProcessingResult; failures are reported in it, not raised
        """
        start = self._clock()
        key = fingerprint(text)

        cached = self._cache_get(key)
        if cached is not None:
            elapsed = self._elapsed_ms(start)
            result = replace(
                cached,
                input=text,
                cache_hit=True,
                tokens_used=0,
                cost_usd=0.0,
                execution_time_ms=elapsed,
                timestamp=time.time(),
            )
            logger.debug(f"Cache hit for {key[:12]} ({cached.route_taken.value})")
            self.statistics.record_cache_hit(elapsed)
            await self._emit(result)
            return result

        classification = self.classifier.classify(text)
        if self.config.remote.refine_unknown and classification.task_type is TaskType.UNKNOWN:
            classification = await self._refine(text, classification, timeout)

        route = self.decide_route(classification)
        logger.debug(
            f"Routing {classification.task_type.value} "
            f"(confidence {classification.confidence:.2f}) via {route.value}"
        )

        try:
            if route is ProcessingRoute.LOCAL:
                result = await self._execute_local(text, classification)
            elif route is ProcessingRoute.HYBRID:
                result = await self._execute_hybrid(text, classification, timeout)
            else:
                result = await self._execute_remote(text, classification, timeout)
        except asyncio.CancelledError:
            self.statistics.record(route, False, self._elapsed_ms(start))
            raise
        except Exception as e:
            logger.exception(f"Unexpected routing failure: {e}")
            result = self._failure(
                text, classification, route, InternalRoutingError(str(e)), self._elapsed_ms(start)
            )

        self._finish(key, result)
        await self._emit(result)
        return result

    # Execution paths

    async def _execute_local(self, text: str, classification: ClassificationResult) -> TaskProcessingResult:
        local = await self._run_local(classification)
        if not local.ok:
            return self._failure(text, classification, ProcessingRoute.LOCAL, local.error, local.elapsed_ms)
        return TaskProcessingResult(
            input=text,
            classification=classification,
            route_taken=ProcessingRoute.LOCAL,
            success=True,
            output=local.result.output,
            execution_time_ms=local.elapsed_ms,
        )

    async def _execute_remote(
        self,
        text: str,
        classification: ClassificationResult,
        timeout: float | None,
    ) -> TaskProcessingResult:
        remote_start = self._clock()
        try:
            answer = await self._call_remote(text, classification, timeout)
        except RoutingError as e:
            logger.warning(f"Remote failed for {classification.task_type.value}: {e}")
            return await self._degrade(
                text, classification, e, ProcessingRoute.REMOTE, self._elapsed_ms(remote_start)
            )

        return TaskProcessingResult(
            input=text,
            classification=classification,
            route_taken=ProcessingRoute.REMOTE,
            success=True,
            output=answer.output,
            execution_time_ms=answer.elapsed_ms,
            tokens_used=answer.tokens,
            cost_usd=answer.cost_usd,
            model=answer.model,
            metadata={"attempts": str(answer.attempts)},
        )

    async def _execute_hybrid(
        self,
        text: str,
        classification: ClassificationResult,
        timeout: float | None,
    ) -> TaskProcessingResult:
        local = await self._run_local(classification)
        if local.ok and self._local_is_adequate(local.result):
            return TaskProcessingResult(
                input=text,
                classification=classification,
                route_taken=ProcessingRoute.HYBRID,
                success=True,
                output=local.result.output,
                execution_time_ms=local.elapsed_ms,
                metadata={"resolved_by": "local"},
            )

        reason = str(local.error) if local.error else "local confidence below threshold"
        logger.debug(f"Escalating hybrid {classification.task_type.value} to remote: {reason}")
        remote_start = self._clock()
        try:
            answer = await self._call_remote(text, classification, timeout)
        except RoutingError as e:
            logger.warning(f"Remote failed during hybrid escalation: {e}")
            elapsed = local.elapsed_ms + self._elapsed_ms(remote_start)
            if local.ok:
                return TaskProcessingResult(
                    input=text,
                    classification=classification,
                    route_taken=ProcessingRoute.LOCAL,
                    success=True,
                    output=local.result.output,
                    execution_time_ms=elapsed,
                    degraded=True,
                    metadata={
                        "requested_route": ProcessingRoute.HYBRID.value,
                        "degraded_reason": e.kind.value,
                    },
                )
            return self._failure(
                text,
                classification,
                ProcessingRoute.HYBRID,
                FallbackExhaustedError(classification.task_type, cause=e),
                elapsed,
                metadata={"local_error": local.error.kind.value},
            )

        return TaskProcessingResult(
            input=text,
            classification=classification,
            route_taken=ProcessingRoute.HYBRID,
            success=True,
            output=answer.output,
            execution_time_ms=local.elapsed_ms + answer.elapsed_ms,
            tokens_used=answer.tokens,
            cost_usd=answer.cost_usd,
            model=answer.model,
            metadata={"resolved_by": "remote", "escalation_reason": reason},
        )

    def _local_is_adequate(self, result: TaskResult) -> bool:
        return result.confidence is None or result.confidence >= self.config.thresholds.local

    async def _degrade(
        self,
        text: str,
        classification: ClassificationResult,
        cause: RoutingError,
        requested: ProcessingRoute,
        remote_ms: float,
    ) -> TaskProcessingResult:
        """
        Best-effort local execution after the remote path failed.

        remote_ms is the time already spent on the remote step; it is
        included in the reported execution time.
        """
        if classification.task_type not in self.executors:
            return self._failure(
                text,
                classification,
                requested,
                FallbackExhaustedError(classification.task_type, cause=cause),
                remote_ms,
            )

        local = await self._run_local(classification)
        if not local.ok:
            return self._failure(
                text,
                classification,
                requested,
                FallbackExhaustedError(classification.task_type, cause=cause),
                remote_ms + local.elapsed_ms,
                metadata={"local_error": local.error.kind.value},
            )

        logger.info(f"Served {classification.task_type.value} locally after {cause.kind.value}")
        return TaskProcessingResult(
            input=text,
            classification=classification,
            route_taken=ProcessingRoute.LOCAL,
            success=True,
            output=local.result.output,
            execution_time_ms=remote_ms + local.elapsed_ms,
            degraded=True,
            metadata={"requested_route": requested.value, "degraded_reason": cause.kind.value},
        )

    async def _run_local(self, classification: ClassificationResult) -> _LocalAnswer:
        executor = self.executors.get(classification.task_type)
        start = self._clock()
        if executor is None:
            return _LocalAnswer(
                None,
                LocalExecutionError(f"No local executor for {classification.task_type.value}"),
                0.0,
            )

        try:
            result = await executor.execute(classification.parameters)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Local executor for {classification.task_type.value} raised: {e}")
            return _LocalAnswer(None, InternalRoutingError(f"Local executor crashed: {e}"), self._elapsed_ms(start))

        elapsed = self._elapsed_ms(start)
        if not result.success:
            message = result.error_message or "Local executor reported failure"
            return _LocalAnswer(result, LocalExecutionError(message), elapsed)
        return _LocalAnswer(result, None, elapsed)

    # Remote

    async def _call_remote(
        self,
        text: str,
        classification: ClassificationResult,
        timeout: float | None,
    ) -> _RemoteAnswer:
        """
        Run the remote step with budget checks, retries and one overall timeout.

        Raises:
            RoutingError: The final failure once retries are exhausted
        """
        if self.remote is None:
            raise CloudServiceUnavailableError("No remote service configured")
        if self.controller.should_suppress_remote():
            raise CloudServiceUnavailableError("Remote calls are suppressed after repeated failures")

        timeout = timeout if timeout is not None else self.config.remote.timeout
        start = self._clock()
        try:
            answer = await asyncio.wait_for(self._remote_with_retries(text, classification), timeout)
        except asyncio.TimeoutError as e:
            # The cancelled attempt has already been recorded as a failure
            raise RemoteTimeoutError(f"Remote step exceeded {timeout:.1f}s") from e
        # Failed attempts and backoff sleeps count towards the step
        answer.elapsed_ms = self._elapsed_ms(start)
        return answer

    async def _remote_with_retries(self, text: str, classification: ClassificationResult) -> _RemoteAnswer:
        retry = self.config.retry
        estimated = estimate_tokens(text) + self.config.remote.max_tokens
        attempt = 0
        while True:
            attempt += 1
            try:
                self.controller.acquire(estimated)
                answer = await self._remote_attempt(text, classification)
            except RoutingError as e:
                if not e.retryable or attempt >= retry.max_attempts:
                    raise
                wait = e.wait_seconds if isinstance(e, RateLimitExceededError) else None
                delay = retry.delay_for(attempt, wait)
                logger.warning(f"Remote attempt {attempt} failed ({e.kind.value}), retrying in {delay:.1f}s")
                await self._sleep(delay)
                continue
            answer.attempts = attempt
            return answer

    async def _remote_attempt(self, text: str, classification: ClassificationResult) -> _RemoteAnswer:
        start = self._clock()
        parts: list[str] = []
        final = None
        try:
            async with aclosing(self.remote.execute_stream(text, classification)) as stream:
                async for chunk in stream:
                    if chunk.text:
                        parts.append(chunk.text)
                    if chunk.is_final:
                        final = chunk
                        break
        except asyncio.CancelledError:
            self.controller.record_remote_outcome(False)
            raise
        except RoutingError:
            self.controller.record_remote_outcome(False)
            raise
        except Exception as e:
            self.controller.record_remote_outcome(False)
            raise InvalidCloudResponseError(f"Remote stream failed: {e}") from e

        output = "".join(parts)
        if not output.strip():
            self.controller.record_remote_outcome(False)
            raise InvalidCloudResponseError("Remote returned an empty response")

        elapsed = self._elapsed_ms(start)
        self.controller.record_remote_outcome(True)
        self.controller.record_remote_latency(elapsed)

        tokens = 0
        cost = 0.0
        model = None
        if final is not None:
            model = final.model
            usage = self.cost_tracker.record_usage(
                final.input_tokens,
                final.output_tokens,
                final.model or self.config.remote.model,
                CostComponent.EXECUTE,
                latency_ms=elapsed,
            )
            tokens = usage.total_tokens
            cost = usage.estimate_cost()

        return _RemoteAnswer(output=output, tokens=tokens, cost_usd=cost, model=model, elapsed_ms=elapsed, attempts=1)

    async def _refine(
        self,
        text: str,
        classification: ClassificationResult,
        timeout: float | None,
    ) -> ClassificationResult:
        """Ask the remote service to classify input the local rules could not."""
        if self.remote is None or self.controller.should_suppress_remote():
            return classification

        timeout = timeout if timeout is not None else self.config.remote.timeout
        try:
            refined = await asyncio.wait_for(self.remote.classify_remote(text), timeout)
        except asyncio.TimeoutError:
            self.controller.record_remote_outcome(False)
            logger.warning("Remote classification timed out")
            return classification
        except RoutingError as e:
            self.controller.record_remote_outcome(False)
            logger.warning(f"Remote classification failed: {e}")
            return classification

        self.controller.record_remote_outcome(True)
        return refined

    # Completion

    def _failure(
        self,
        text: str,
        classification: ClassificationResult,
        route: ProcessingRoute,
        error: RoutingError,
        elapsed_ms: float,
        metadata: dict[str, str] | None = None,
    ) -> TaskProcessingResult:
        return TaskProcessingResult(
            input=text,
            classification=classification,
            route_taken=route,
            success=False,
            output=f"{error.user_message} {error.recovery_suggestion}",
            execution_time_ms=elapsed_ms,
            error=error,
            metadata=metadata or {},
        )

    def _cache_get(self, key: str) -> TaskProcessingResult | None:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning(f"Cache lookup failed, continuing without cache: {e}")
            return None

    def _finish(self, key: str, result: TaskProcessingResult) -> None:
        # Degraded answers are never cached
        if result.success and not result.degraded:
            try:
                self.cache.put(key, result)
            except Exception as e:
                logger.warning(f"Cache write failed: {e}")

        self.statistics.record(
            result.route_taken,
            result.success,
            result.execution_time_ms,
            result.tokens_used,
            result.cost_usd,
        )

    async def _emit(self, result: TaskProcessingResult) -> None:
        if self.sink is None:
            return
        # Sinks may do file I/O; keep it off the event loop
        try:
            await asyncio.to_thread(self.sink.emit, result)
        except Exception as e:
            logger.warning(f"History sink failed: {e}")

    # Maintenance and observability

    def snapshot(self) -> RoutingStatistics:
        return self.statistics.snapshot()

    def forget_everything(self) -> None:
        """Drop every cached result, e.g. when the user asks to delete their data."""
        self.cache.invalidate_all()

    def check_health(self) -> SystemHealth:
        """Report local, remote and cache health plus an overall status."""
        components: dict[str, ComponentHealth] = {}

        probe = self.classifier.quick_classify("what's my battery level")
        if probe is None:
            components["local"] = ComponentHealth(status=HealthStatus.UNHEALTHY, detail="classifier probe failed")
        elif not self.executors.task_types:
            components["local"] = ComponentHealth(status=HealthStatus.DEGRADED, detail="no local executors")
        else:
            names = ", ".join(t.value for t in self.executors.task_types)
            components["local"] = ComponentHealth(status=HealthStatus.HEALTHY, detail=f"executors: {names}")

        status = self.controller.status()
        if self.remote is None:
            components["remote"] = ComponentHealth(status=HealthStatus.UNHEALTHY, detail="not configured")
        elif status.suppressed:
            components["remote"] = ComponentHealth(
                status=HealthStatus.UNHEALTHY,
                detail=f"suppressed for {status.suppressed_for_seconds:.0f}s",
            )
        elif status.window_failures:
            components["remote"] = ComponentHealth(
                status=HealthStatus.DEGRADED,
                detail=f"{status.window_failures}/{status.window_samples} recent calls failed",
            )
        else:
            components["remote"] = ComponentHealth(status=HealthStatus.HEALTHY)

        cache_stats = self.cache.stats()
        if not self.cache.config.enabled:
            components["cache"] = ComponentHealth(status=HealthStatus.DEGRADED, detail="disabled")
        else:
            components["cache"] = ComponentHealth(
                status=HealthStatus.HEALTHY,
                detail=f"{cache_stats.entries}/{cache_stats.max_entries} entries",
            )

        # Overall status follows local health; other components can only degrade it
        if components["local"].status is HealthStatus.UNHEALTHY:
            overall = HealthStatus.UNHEALTHY
        elif any(c.status is not HealthStatus.HEALTHY for c in components.values()):
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY
        return SystemHealth(status=overall, components=components)


__all__ = [
    "ComponentHealth",
    "HealthStatus",
    "HybridRouter",
    "SystemHealth",
]
