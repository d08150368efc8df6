"""
Routing statistics.

Additive counters per route, updated once per completed request.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

from .types import ProcessingRoute


class RouteMetrics(BaseModel):
    """Counters for one processing route."""

    requests: int = 0
    successes: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0
    tokens: int = 0
    cost_usd: float = 0.0

    @property
    def average_latency_ms(self) -> float:
        return self.total_latency_ms / self.requests if self.requests else 0.0


class RoutingStatistics(BaseModel):
    """Snapshot of routing activity since start or last reset."""

    routes: dict[ProcessingRoute, RouteMetrics] = Field(default_factory=dict)
    cache_hits: int = 0
    cache_hit_latency_ms: float = 0.0
    started_at: float = 0.0

    @property
    def total_requests(self) -> int:
        """Requests served, including cache hits."""
        return sum(m.requests for m in self.routes.values()) + self.cache_hits

    @property
    def success_rate(self) -> float:
        executed = sum(m.requests for m in self.routes.values())
        if not executed:
            return 0.0
        return sum(m.successes for m in self.routes.values()) / executed

    @property
    def cache_hit_rate(self) -> float:
        total = self.total_requests
        return self.cache_hits / total if total else 0.0

    @property
    def total_cost_usd(self) -> float:
        return sum(m.cost_usd for m in self.routes.values())

    @property
    def total_tokens(self) -> int:
        return sum(m.tokens for m in self.routes.values())

    def average_latency_ms(self, route: ProcessingRoute) -> float:
        metrics = self.routes.get(route)
        return metrics.average_latency_ms if metrics else 0.0

    def summary(self) -> dict[str, float | int]:
        """Derived figures, flattened for logging or telemetry."""
        data: dict[str, float | int] = {
            "total_requests": self.total_requests,
            "success_rate": self.success_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "total_cost_usd": self.total_cost_usd,
            "total_tokens": self.total_tokens,
        }
        for route in ProcessingRoute:
            data[f"{route.value}_avg_latency_ms"] = self.average_latency_ms(route)
        return data


@dataclass
class _Counters:
    requests: int = 0
    successes: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0
    tokens: int = 0
    cost_usd: float = 0.0


class StatisticsAggregator:
    """Thread-safe accumulator behind RoutingStatistics."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._routes = {route: _Counters() for route in ProcessingRoute}
        self._cache_hits = 0
        self._cache_hit_latency_ms = 0.0
        self._started_at = self._clock()

    def record(
        self,
        route: ProcessingRoute,
        success: bool,
        latency_ms: float,
        tokens: int = 0,
        cost_usd: float = 0.0,
    ) -> None:
        with self._lock:
            counters = self._routes[route]
            counters.requests += 1
            if success:
                counters.successes += 1
            else:
                counters.failures += 1
            counters.total_latency_ms += latency_ms
            counters.tokens += tokens
            counters.cost_usd += cost_usd

    def record_cache_hit(self, latency_ms: float = 0.0) -> None:
        with self._lock:
            self._cache_hits += 1
            self._cache_hit_latency_ms += latency_ms

    def snapshot(self) -> RoutingStatistics:
        with self._lock:
            return RoutingStatistics(
                routes={
                    route: RouteMetrics(**vars(counters))
                    for route, counters in self._routes.items()
                },
                cache_hits=self._cache_hits,
                cache_hit_latency_ms=self._cache_hit_latency_ms,
                started_at=self._started_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()


__all__ = ["RouteMetrics", "RoutingStatistics", "StatisticsAggregator"]
