"""
Remote health breaker and request budget.

Keeps a sliding window of remote outcomes. When too many recent calls
failed, remote calls are suppressed for a cooldown period so requests
degrade to local execution instead of piling onto a failing service.
The same window enforces requests-per-minute and tokens-per-minute.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import NamedTuple

from pydantic import BaseModel

from .config import ControllerConfig
from .types import RateLimitExceededError

logger = logging.getLogger(__name__)


class _Outcome(NamedTuple):
    at: float
    success: bool


class ControllerStatus(BaseModel):
    """Snapshot of breaker and budget state."""

    suppressed: bool
    suppressed_for_seconds: float
    window_samples: int
    window_failures: int
    failure_rate: float
    requests_in_window: int
    tokens_in_window: int
    average_latency_ms: float | None = None
    trips: int = 0


class RemoteHealthController:
    """
    Decides whether the remote service should be tried at all.

    Writes go through a lock. should_suppress_remote() only reads a single
    float, so it stays lock-free on the hot path.
    """

    def __init__(self, config: ControllerConfig | None = None, clock: Callable[[], float] = time.time):
        self.config = config or ControllerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._outcomes: deque[_Outcome] = deque()
        self._requests: deque[tuple[float, int]] = deque()  # (time, estimated tokens)
        self._latencies: deque[tuple[float, float]] = deque()
        self._suppressed_until = 0.0
        self._trips = 0

    def _prune(self, now: float) -> None:
        """Drop samples older than the window. Caller holds the lock."""
        cutoff = now - self.config.window_seconds
        for window in (self._outcomes, self._requests, self._latencies):
            while window and window[0][0] < cutoff:
                window.popleft()

    def should_suppress_remote(self) -> bool:
        """True while the breaker cooldown is running."""
        return self._clock() < self._suppressed_until

    def record_remote_outcome(self, success: bool) -> None:
        """
        Record the result of one remote call.

        Trips the breaker when the failure rate in the window exceeds the
        threshold with at least min_samples outcomes. The window is cleared
        on a trip so the service is judged afresh after the cooldown.
        """
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._outcomes.append(_Outcome(now, success))

            samples = len(self._outcomes)
            failures = sum(1 for outcome in self._outcomes if not outcome.success)
            if samples < self.config.min_samples:
                return
            rate = failures / samples
            if rate > self.config.failure_threshold:
                self._suppressed_until = now + self.config.cooldown_seconds
                self._trips += 1
                self._outcomes.clear()
                logger.info(
                    f"Remote suppressed for {self.config.cooldown_seconds:.0f}s "
                    f"({failures}/{samples} recent calls failed)"
                )

    def record_remote_latency(self, latency_ms: float) -> None:
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._latencies.append((now, latency_ms))

    def acquire(self, estimated_tokens: int = 0) -> None:
        """
        Reserve budget for one remote request.

        Args:
            estimated_tokens: Expected token usage of the request

        Raises:
            RateLimitExceededError: If the request or token budget for the
                window is spent; wait_seconds says when budget frees up
        """
        now = self._clock()
        with self._lock:
            self._prune(now)
            tokens = sum(count for _, count in self._requests)

            over_requests = len(self._requests) >= self.config.max_requests_per_minute
            over_tokens = bool(self._requests) and tokens + estimated_tokens > self.config.max_tokens_per_minute
            if over_requests or over_tokens:
                oldest = self._requests[0][0]
                wait = oldest + self.config.window_seconds - now
                raise RateLimitExceededError(
                    wait,
                    f"Remote {'request' if over_requests else 'token'} budget exhausted",
                )

            self._requests.append((now, estimated_tokens))

    def status(self) -> ControllerStatus:
        now = self._clock()
        with self._lock:
            self._prune(now)
            samples = len(self._outcomes)
            failures = sum(1 for outcome in self._outcomes if not outcome.success)
            latencies = [latency for _, latency in self._latencies]
            return ControllerStatus(
                suppressed=now < self._suppressed_until,
                suppressed_for_seconds=max(0.0, self._suppressed_until - now),
                window_samples=samples,
                window_failures=failures,
                failure_rate=failures / samples if samples else 0.0,
                requests_in_window=len(self._requests),
                tokens_in_window=sum(count for _, count in self._requests),
                average_latency_ms=sum(latencies) / len(latencies) if latencies else None,
                trips=self._trips,
            )

    def reset(self) -> None:
        """Forget all history and lift any suppression."""
        with self._lock:
            self._outcomes.clear()
            self._requests.clear()
            self._latencies.clear()
            self._suppressed_until = 0.0


__all__ = ["ControllerStatus", "RemoteHealthController"]
