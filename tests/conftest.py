"""
Pytest configuration and fixtures for taskroute tests.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path so we can import the taskroute package
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskroute.cache import ResponseCache
from taskroute.config import CacheConfig, ControllerConfig, RetryConfig, RouterConfig
from taskroute.cost_tracker import CostTracker
from taskroute.executors import CalculationExecutor, ExecutorRegistry, HelpExecutor
from taskroute.rate_controller import RemoteHealthController
from taskroute.remote import RemoteChunk
from taskroute.router import HybridRouter
from taskroute.statistics import StatisticsAggregator
from taskroute.types import (
    ClassificationResult,
    InvalidCloudResponseError,
    TaskResult,
    TaskType,
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote:
    """
    Scripted remote service.

    `errors` are raised by successive execute_stream calls, one per call;
    None in the list means that call succeeds. Once the list is used up,
    calls succeed unless `always_fail` is set.
    """

    def __init__(
        self,
        output="Here is the remote answer.",
        errors=None,
        always_fail=None,
        input_tokens=120,
        output_tokens=40,
        model="claude-haiku-4-5-20251001",
        delay=0.0,
        classification=None,
    ):
        self.output = output
        self.errors = list(errors or [])
        self.always_fail = always_fail
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.model = model
        self.delay = delay
        self.classification = classification
        self.calls = 0
        self.classify_calls = 0
        self.closed = 0

    async def classify_remote(self, text, context=None):
        self.classify_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.classification is None:
            raise InvalidCloudResponseError("No classification scripted")
        return self.classification

    async def execute_stream(self, text, classification):
        self.calls += 1
        try:
            if self.errors:
                error = self.errors.pop(0)
                if error is not None:
                    raise error
            elif self.always_fail is not None:
                raise self.always_fail
            if self.delay:
                await asyncio.sleep(self.delay)
            middle = len(self.output) // 2
            yield RemoteChunk(text=self.output[:middle])
            yield RemoteChunk(text=self.output[middle:])
            yield RemoteChunk(
                text="",
                is_final=True,
                input_tokens=self.input_tokens,
                output_tokens=self.output_tokens,
                model=self.model,
            )
        finally:
            self.closed += 1


class FakeExecutor:
    """Local executor returning a fixed TaskResult and recording calls."""

    def __init__(self, output="done", success=True, confidence=None, error_message=None, raises=None):
        self.output = output
        self.success = success
        self.confidence = confidence
        self.error_message = error_message
        self.raises = raises
        self.calls = []

    async def execute(self, parameters):
        self.calls.append(dict(parameters))
        if self.raises is not None:
            raise self.raises
        return TaskResult(
            success=self.success,
            output=self.output if self.success else "",
            error_message=self.error_message,
            confidence=self.confidence,
        )


class FixedClassifier:
    """Classifier stand-in that always returns the same result."""

    def __init__(self, result):
        self.result = result
        self.calls = 0

    def classify(self, text):
        self.calls += 1
        return self.result

    def quick_classify(self, text):
        return self.result


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_classification(task_type=TaskType.FILE_OPERATION, confidence=0.9, **parameters):
    """Build a ClassificationResult for routing tests."""
    return ClassificationResult(task_type=task_type, confidence=confidence, parameters=parameters)


@pytest.fixture
def clock():
    """Provide a fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def fake_remote_cls():
    """Provide the FakeRemote class for tests that script their own remote."""
    return FakeRemote


@pytest.fixture
def fake_executor_cls():
    """Provide the FakeExecutor class."""
    return FakeExecutor


@pytest.fixture
def fixed_classifier_cls():
    """Provide the FixedClassifier class."""
    return FixedClassifier


@pytest.fixture
def classification():
    """Provide the make_classification helper."""
    return make_classification


@pytest.fixture
def remote():
    """Provide a remote that always succeeds."""
    return FakeRemote()


@pytest.fixture
def file_executor():
    """Provide a file executor that always succeeds."""
    return FakeExecutor(output="Copied file.txt to Desktop")


@pytest.fixture
def sleeper():
    """Provide a recording sleep function."""
    return SleepRecorder()


@pytest.fixture
def router_config():
    """Provide a config with a small breaker window and fast retries."""
    return RouterConfig(
        cache=CacheConfig(max_entries=100, bucket_count=4),
        controller=ControllerConfig(min_samples=5, cooldown_seconds=30.0),
        retry=RetryConfig(max_attempts=3, base_delay=1.0, factor=2.0, max_delay=30.0),
    )


@pytest.fixture
def make_router(router_config, clock, remote, file_executor, sleeper):
    """
    Provide a factory for routers wired to fakes.

    Keyword arguments override any collaborator. By default the registry
    holds help, calculation and a fake file executor; `extra_executors`
    adds more.
    """

    def factory(**overrides):
        extra = overrides.pop("extra_executors", {})
        executors = overrides.pop("executors", None)
        if executors is None:
            executors = ExecutorRegistry(
                {
                    TaskType.HELP: HelpExecutor(),
                    TaskType.CALCULATION: CalculationExecutor(),
                    TaskType.FILE_OPERATION: file_executor,
                    **extra,
                }
            )
        config = overrides.pop("config", router_config)
        kwargs = {
            "config": config,
            "cache": ResponseCache(config.cache, clock=clock),
            "controller": RemoteHealthController(config.controller, clock=clock),
            "statistics": StatisticsAggregator(clock=clock),
            "executors": executors,
            "remote": remote,
            "cost_tracker": CostTracker(),
            "sleep": sleeper,
        }
        kwargs.update(overrides)
        return HybridRouter(**kwargs)

    return factory


# Markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "hypothesis: property-based tests"
    )
    config.addinivalue_line(
        "markers", "slow: tests that take >1s"
    )
