"""
Unit tests for config module.
"""

import json

import pytest

from taskroute.config import (
    CONFIG_ENV_VAR,
    CacheConfig,
    ControllerConfig,
    HistoryConfig,
    RemoteConfig,
    RetryConfig,
    RouterConfig,
    ThresholdConfig,
    apply_env_overrides,
)


class TestThresholdConfig:
    """Tests for ThresholdConfig."""

    def test_default_values(self):
        """Defaults are 0.80 local and 0.70 hybrid."""
        config = ThresholdConfig()
        assert config.local == 0.80
        assert config.hybrid == 0.70

    def test_hybrid_above_local_rejected(self):
        """The hybrid band cannot sit above the local band."""
        with pytest.raises(ValueError):
            ThresholdConfig(local=0.6, hybrid=0.7)

    def test_out_of_range_rejected(self):
        """Thresholds live in [0, 1]."""
        with pytest.raises(ValueError):
            ThresholdConfig(local=1.5)

    def test_equal_thresholds_allowed(self):
        """Equal thresholds disable the hybrid band."""
        config = ThresholdConfig(local=0.75, hybrid=0.75)
        assert config.local == config.hybrid


class TestCacheConfig:
    """Tests for CacheConfig."""

    def test_default_values(self):
        """Has expected default values."""
        config = CacheConfig()
        assert config.enabled is True
        assert config.default_ttl == 3600
        assert config.max_entries == 10_000
        assert config.max_output_chars == 10_000

    def test_ttl_for(self):
        """Per-type TTLs with a default fallback."""
        config = CacheConfig()
        assert config.ttl_for("help") == 86400
        assert config.ttl_for("system_query") == 300
        assert config.ttl_for("web_query") == 3600

    @pytest.mark.parametrize("kwargs", [{"default_ttl": 0}, {"max_entries": 0}, {"bucket_count": 0}])
    def test_invalid_values(self, kwargs):
        """Non-positive sizes and TTLs are rejected."""
        with pytest.raises(ValueError):
            CacheConfig(**kwargs)


class TestControllerConfig:
    """Tests for ControllerConfig."""

    def test_default_values(self):
        """Has expected default values."""
        config = ControllerConfig()
        assert config.window_seconds == 60
        assert config.failure_threshold == 0.5
        assert config.min_samples == 5
        assert config.cooldown_seconds == 30
        assert config.max_requests_per_minute == 60

    def test_invalid_threshold(self):
        """Failure threshold is a fraction."""
        with pytest.raises(ValueError):
            ControllerConfig(failure_threshold=2.0)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_exponential_backoff(self):
        """Delays double per attempt."""
        config = RetryConfig(base_delay=1.0, factor=2.0, max_delay=30.0)
        assert [config.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        """Delays never exceed max_delay."""
        config = RetryConfig(base_delay=1.0, factor=2.0, max_delay=5.0)
        assert config.delay_for(10) == 5.0

    def test_retry_after_wins(self):
        """A server hint replaces the computed delay."""
        config = RetryConfig(max_delay=30.0)
        assert config.delay_for(1, retry_after=7.0) == 7.0
        assert config.delay_for(1, retry_after=120.0) == 30.0

    def test_at_least_one_attempt(self):
        """max_attempts must be positive."""
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)


class TestRemoteConfig:
    """Tests for RemoteConfig."""

    def test_default_values(self):
        """Defaults to Anthropic Haiku with a 10 second timeout."""
        config = RemoteConfig()
        assert config.provider == "anthropic"
        assert config.model == "haiku"
        assert config.timeout == 10.0
        assert config.refine_unknown is False

    def test_unknown_provider(self):
        """Only anthropic and openai are supported."""
        with pytest.raises(ValueError):
            RemoteConfig(provider="cohere")

    def test_heavier_tasks_get_stronger_model(self):
        """Complex and advanced tasks map to sonnet by default."""
        config = RemoteConfig()
        assert config.models_by_complexity == {"complex": "sonnet", "advanced": "sonnet"}

    def test_unknown_complexity_level(self):
        """Only known complexity levels can be mapped."""
        with pytest.raises(ValueError, match="unknown levels"):
            RemoteConfig(models_by_complexity={"trivial": "haiku"})


class TestRouterConfig:
    """Tests for RouterConfig."""

    def test_default_config(self):
        """All sections have defaults."""
        config = RouterConfig()
        assert config.thresholds.local == 0.80
        assert config.history.enabled is False
        assert isinstance(config.history, HistoryConfig)

    def test_from_dict(self):
        """Partial dicts fill in the rest from defaults."""
        config = RouterConfig.from_dict(
            {"thresholds": {"local": 0.9}, "remote": {"provider": "openai", "model": "gpt-4o-mini"}}
        )
        assert config.thresholds.local == 0.9
        assert config.thresholds.hybrid == 0.70
        assert config.remote.provider == "openai"
        assert config.cache.max_entries == 10_000

    def test_save_and_load(self, tmp_path):
        """Saved config loads back unchanged."""
        path = tmp_path / "config.json"
        original = RouterConfig.from_dict({"cache": {"max_entries": 42}})
        original.save(path)

        loaded = RouterConfig.load(path, environ={})
        assert loaded == original
        assert json.loads(path.read_text())["cache"]["max_entries"] == 42

    def test_missing_file_gives_defaults(self, tmp_path):
        """A missing file is not an error."""
        config = RouterConfig.load(tmp_path / "missing.json", environ={})
        assert config == RouterConfig()

    def test_path_from_environment(self, tmp_path):
        """TASKROUTE_CONFIG points at the config file."""
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"thresholds": {"local": 0.85}}))
        config = RouterConfig.load(environ={CONFIG_ENV_VAR: str(path)})
        assert config.thresholds.local == 0.85

    def test_env_overrides_file(self, tmp_path):
        """Environment variables win over file values."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"remote": {"timeout": 5}}))
        config = RouterConfig.load(
            path,
            environ={"TASKROUTE_REMOTE_TIMEOUT": "2.5", "TASKROUTE_CACHE_MAX_ENTRIES": "7"},
        )
        assert config.remote.timeout == 2.5
        assert config.cache.max_entries == 7

    def test_invalid_override_is_validated(self, tmp_path):
        """Overrides go through the same validation."""
        with pytest.raises(ValueError):
            RouterConfig.load(tmp_path / "missing.json", environ={"TASKROUTE_HYBRID_THRESHOLD": "0.95"})


class TestApplyEnvOverrides:
    """Tests for apply_env_overrides."""

    def test_empty_values_ignored(self):
        """Empty variables do not override."""
        assert apply_env_overrides({}, {"TASKROUTE_REMOTE_MODEL": ""}) == {}

    def test_does_not_mutate_input(self):
        """The original data is left alone."""
        data = {"remote": {"model": "haiku"}}
        merged = apply_env_overrides(data, {"TASKROUTE_REMOTE_MODEL": "sonnet"})
        assert merged["remote"]["model"] == "sonnet"
        assert data["remote"]["model"] == "haiku"

    def test_bad_value_names_variable(self):
        """Conversion errors say which variable was wrong."""
        with pytest.raises(ValueError, match="TASKROUTE_CACHE_TTL"):
            apply_env_overrides({}, {"TASKROUTE_CACHE_TTL": "soon"})
