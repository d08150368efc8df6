"""
Integration tests for end-to-end routing scenarios.

Each test runs the real classifier, cache, controller and statistics
against fake executors and a fake remote service.
"""

from types import SimpleNamespace

import psutil
import pytest

from taskroute.executors import SystemQueryExecutor
from taskroute.types import (
    CloudServiceUnavailableError,
    ErrorKind,
    FallbackExhaustedError,
    ProcessingRoute,
    TaskType,
)

HUGE_DOCUMENT = " ".join(["Revenue grew in every region except the north."] * 500)


@pytest.fixture
def battery(monkeypatch):
    monkeypatch.setattr(
        psutil,
        "sensors_battery",
        lambda: SimpleNamespace(percent=64.0, secsleft=7200, power_plugged=False),
    )


class TestRoutingScenarios:
    """The reference routing scenarios, end to end."""

    @pytest.mark.asyncio
    async def test_copy_file_runs_locally(self, make_router, remote, file_executor):
        """Scenario: a complete file command is handled on device."""
        router = make_router()
        result = await router.route("copy file.txt to Desktop")

        assert result.classification.task_type is TaskType.FILE_OPERATION
        assert result.classification.confidence >= 0.80
        assert result.route_taken is ProcessingRoute.LOCAL
        assert result.success
        assert file_executor.calls == [dict(result.classification.parameters)]
        assert remote.calls == 0

    @pytest.mark.asyncio
    async def test_battery_query_runs_locally(self, make_router, remote, battery):
        """Scenario: system questions are answered from local state."""
        router = make_router(extra_executors={TaskType.SYSTEM_QUERY: SystemQueryExecutor()})
        result = await router.route("what's my battery percentage")

        assert result.classification.task_type is TaskType.SYSTEM_QUERY
        assert result.classification.confidence >= 0.80
        assert result.route_taken is ProcessingRoute.LOCAL
        assert result.output == "Battery is at 64% (on battery power, about 2h 0m remaining)."
        assert remote.calls == 0

    @pytest.mark.asyncio
    async def test_summary_is_hybrid(self, make_router, remote):
        """Scenario: summaries fall in the hybrid band and escalate without a local summarizer."""
        router = make_router()
        result = await router.route(f"summarize this document: {HUGE_DOCUMENT}")

        assert result.classification.task_type is TaskType.TEXT_PROCESSING
        assert 0.70 <= result.classification.confidence < 0.80
        assert result.route_taken is ProcessingRoute.HYBRID
        assert result.success
        assert result.metadata["resolved_by"] == "remote"
        assert remote.calls == 1

    @pytest.mark.asyncio
    async def test_unknown_goes_remote(self, make_router, remote):
        """Scenario: unmatched input is sent to the remote service."""
        router = make_router()
        result = await router.route("blorp zindle florn")

        assert result.classification.task_type is TaskType.UNKNOWN
        assert result.classification.confidence < 0.70
        assert result.route_taken is ProcessingRoute.REMOTE
        assert result.success
        assert result.tokens_used > 0

    @pytest.mark.asyncio
    async def test_unknown_with_suppressed_remote(self, make_router, fake_remote_cls):
        """Scenario: once the breaker trips, unknown input exhausts the fallbacks without remote calls."""
        remote = fake_remote_cls(always_fail=CloudServiceUnavailableError())
        router = make_router(remote=remote)

        # Trip the breaker with unrelated remote-bound traffic
        for i in range(5):
            await router.route(f"zzyzx query number {i}")
        calls_before = remote.calls
        assert router.controller.should_suppress_remote()

        result = await router.route("blorp zindle florn")

        assert result.route_taken is ProcessingRoute.REMOTE
        assert isinstance(result.error, FallbackExhaustedError)
        assert result.error.kind is ErrorKind.FALLBACK_EXHAUSTED
        assert remote.calls == calls_before

    @pytest.mark.asyncio
    async def test_resubmission_is_cache_hit(self, make_router, clock, file_executor):
        """Scenario: the same request within an hour is served from the cache for free."""
        router = make_router()
        first = await router.route("copy file.txt to Desktop")
        clock.advance(59 * 60)
        second = await router.route("copy file.txt to Desktop")

        assert second.cache_hit
        assert second.output == first.output
        assert second.classification == first.classification
        assert second.tokens_used == 0
        assert second.cost_usd == 0.0
        assert len(file_executor.calls) == 1

    @pytest.mark.asyncio
    async def test_remote_answer_cached(self, make_router, remote):
        """Remote answers are reused without another call or cost."""
        router = make_router()
        await router.route("blorp zindle florn")
        cost_before = router.cost_tracker.total_cost
        second = await router.route("Blorp   zindle florn")

        assert second.cache_hit
        assert remote.calls == 1
        assert router.cost_tracker.total_cost == cost_before


class TestFailureIsolation:
    """Remote outages do not take local processing down."""

    @pytest.mark.asyncio
    async def test_local_work_continues_during_outage(self, make_router, fake_remote_cls):
        """Local requests keep succeeding while remote is suppressed."""
        remote = fake_remote_cls(always_fail=CloudServiceUnavailableError())
        router = make_router(remote=remote)
        for i in range(5):
            await router.route(f"zzyzx query number {i}")

        result = await router.route("calculate 12 * 12")
        assert result.success
        assert result.output == "12 * 12 = 144"

        stats = router.snapshot()
        assert stats.routes[ProcessingRoute.REMOTE].failures == 5
        assert stats.routes[ProcessingRoute.LOCAL].successes == 1

    @pytest.mark.asyncio
    async def test_recovery_after_cooldown(self, make_router, fake_remote_cls, clock):
        """After the cooldown remote calls are allowed again."""
        remote = fake_remote_cls(errors=[CloudServiceUnavailableError()] * 5)
        router = make_router(remote=remote)
        for i in range(5):
            await router.route(f"zzyzx query number {i}")
        assert router.controller.should_suppress_remote()

        clock.advance(31)
        result = await router.route("blorp zindle florn")

        assert result.success
        assert remote.calls == 6
        assert router.check_health().components["remote"].status.value == "healthy"
