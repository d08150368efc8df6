"""
Configuration management for taskroute.

Every tunable of the router lives here: confidence thresholds, cache
sizing and TTLs, breaker and budget settings, retry policy, remote
provider selection and the history log.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal

CONFIG_ENV_VAR = "TASKROUTE_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".taskroute" / "config.json"


@dataclass
class ThresholdConfig:
    """Confidence thresholds used by the route decision."""

    local: float = 0.80  # confidence >= local runs on device
    hybrid: float = 0.70  # hybrid <= confidence < local tries local first

    def __post_init__(self) -> None:
        for name in ("local", "hybrid"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"thresholds.{name} must be within [0, 1], got {value}")
        if self.hybrid > self.local:
            raise ValueError(
                f"thresholds.hybrid ({self.hybrid}) must not exceed thresholds.local ({self.local})"
            )


def _default_task_ttls() -> dict[str, float]:
    # Answers that do not change get to live longer than live system state.
    return {
        "help": 24 * 3600,
        "calculation": 12 * 3600,
        "text_processing": 6 * 3600,
        "system_query": 5 * 60,
    }


@dataclass
class CacheConfig:
    """Configuration for the response cache."""

    enabled: bool = True
    default_ttl: float = 3600.0  # seconds
    max_entries: int = 10_000
    bucket_count: int = 16
    max_output_chars: int = 10_000
    task_ttls: dict[str, float] = field(default_factory=_default_task_ttls)

    def __post_init__(self) -> None:
        if self.default_ttl <= 0:
            raise ValueError("cache.default_ttl must be positive")
        if self.max_entries < 1:
            raise ValueError("cache.max_entries must be at least 1")
        if self.bucket_count < 1:
            raise ValueError("cache.bucket_count must be at least 1")

    def ttl_for(self, task_type: str) -> float:
        """TTL in seconds for results of the given task type value."""
        return float(self.task_ttls.get(task_type, self.default_ttl))


@dataclass
class ControllerConfig:
    """Configuration for the remote health breaker and request budget."""

    window_seconds: float = 60.0
    failure_threshold: float = 0.5  # trip when failure rate exceeds this
    min_samples: int = 5
    cooldown_seconds: float = 30.0
    max_requests_per_minute: int = 60
    max_tokens_per_minute: int = 100_000

    def __post_init__(self) -> None:
        if not 0.0 <= self.failure_threshold <= 1.0:
            raise ValueError("controller.failure_threshold must be within [0, 1]")
        if self.window_seconds <= 0 or self.cooldown_seconds < 0:
            raise ValueError("controller window must be positive and cooldown non-negative")
        if self.min_samples < 1:
            raise ValueError("controller.min_samples must be at least 1")


@dataclass
class RetryConfig:
    """Backoff policy for transient remote failures."""

    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("retry.max_attempts must be at least 1")

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """
        Delay before retry number `attempt` (1-based).

        A server-provided retry_after wins over the computed backoff, but
        neither exceeds max_delay.
        """
        delay = self.base_delay * (self.factor ** (attempt - 1))
        if retry_after is not None:
            delay = retry_after
        return min(delay, self.max_delay)


COMPLEXITY_LEVELS = ("simple", "moderate", "complex", "advanced")


def _default_complexity_models() -> dict[str, str]:
    # Levels not listed here use RemoteConfig.model
    return {"complex": "sonnet", "advanced": "sonnet"}


@dataclass
class RemoteConfig:
    """Remote LLM service settings."""

    provider: Literal["anthropic", "openai"] = "anthropic"
    model: str = "haiku"
    models_by_complexity: dict[str, str] = field(default_factory=_default_complexity_models)
    timeout: float = 10.0  # seconds, wraps all retries of one request
    max_tokens: int = 1024
    temperature: float = 0.3
    refine_unknown: bool = False

    def __post_init__(self) -> None:
        if self.provider not in ("anthropic", "openai"):
            raise ValueError(f"remote.provider must be 'anthropic' or 'openai', got {self.provider!r}")
        if self.timeout <= 0:
            raise ValueError("remote.timeout must be positive")
        unknown = set(self.models_by_complexity) - set(COMPLEXITY_LEVELS)
        if unknown:
            raise ValueError(f"remote.models_by_complexity has unknown levels: {sorted(unknown)}")


@dataclass
class HistoryConfig:
    """Configuration for the JSONL history log."""

    enabled: bool = False
    path: str = "~/.taskroute/history.jsonl"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3


@dataclass
class RouterConfig:
    """Complete taskroute configuration."""

    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, dict]) -> RouterConfig:
        return cls(
            thresholds=ThresholdConfig(**data.get("thresholds", {})),
            cache=CacheConfig(**data.get("cache", {})),
            controller=ControllerConfig(**data.get("controller", {})),
            retry=RetryConfig(**data.get("retry", {})),
            remote=RemoteConfig(**data.get("remote", {})),
            history=HistoryConfig(**data.get("history", {})),
        )

    @classmethod
    def load(cls, path: Path | None = None, environ: Mapping[str, str] | None = None) -> RouterConfig:
        """
        Load configuration from file, then apply environment overrides.

        Args:
            path: Config file; defaults to $TASKROUTE_CONFIG or
                ~/.taskroute/config.json
            environ: Environment to read overrides from (defaults to os.environ)

        Returns:
            RouterConfig, with defaults where the file is missing
        """
        environ = os.environ if environ is None else environ
        if path is None:
            path = Path(environ[CONFIG_ENV_VAR]) if environ.get(CONFIG_ENV_VAR) else DEFAULT_CONFIG_PATH

        data: dict = {}
        if path.exists():
            with open(path) as f:
                data = json.load(f)

        return cls.from_dict(apply_env_overrides(data, environ))

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict[str, dict]:
        return asdict(self)


# (env var, section, key, converter)
_ENV_OVERRIDES = [
    ("TASKROUTE_LOCAL_THRESHOLD", "thresholds", "local", float),
    ("TASKROUTE_HYBRID_THRESHOLD", "thresholds", "hybrid", float),
    ("TASKROUTE_CACHE_TTL", "cache", "default_ttl", float),
    ("TASKROUTE_CACHE_MAX_ENTRIES", "cache", "max_entries", int),
    ("TASKROUTE_REMOTE_PROVIDER", "remote", "provider", str),
    ("TASKROUTE_REMOTE_MODEL", "remote", "model", str),
    ("TASKROUTE_REMOTE_TIMEOUT", "remote", "timeout", float),
    ("TASKROUTE_HISTORY_PATH", "history", "path", str),
]


def apply_env_overrides(data: Mapping[str, dict], environ: Mapping[str, str]) -> dict[str, dict]:
    """
    Overlay TASKROUTE_* environment variables onto raw config data.

    Raises:
        ValueError: If a variable cannot be converted to the field's type
    """
    merged = {section: dict(values) for section, values in data.items()}
    for var, section, key, convert in _ENV_OVERRIDES:
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            merged.setdefault(section, {})[key] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {var}: {raw!r}") from e
    return merged


__all__ = [
    "COMPLEXITY_LEVELS",
    "CONFIG_ENV_VAR",
    "CacheConfig",
    "ControllerConfig",
    "DEFAULT_CONFIG_PATH",
    "HistoryConfig",
    "RemoteConfig",
    "RetryConfig",
    "RouterConfig",
    "ThresholdConfig",
    "apply_env_overrides",
]
