"""Tests for configuration models and layered configuration loading."""

import json

import pytest
from pydantic import ValidationError

from switchyard.config import EnvironmentConfig, PerformanceThresholds, RetrySettings
from switchyard.core.constants import get_env_bool, get_env_int, get_env_list
from switchyard.core.errors import InvalidConfigError
from switchyard.core.settings import (
    CONFIG_PATH_ENV,
    JsonConfigStore,
    environment_overrides,
    find_config_file,
    load_environment_config,
)


@pytest.mark.unit
class TestEnvironmentConfig:
    def test_defaults(self):
        config = EnvironmentConfig()

        assert config.primary_provider == "primary-llm"
        assert config.fallback_providers == ["enterprise-gateway", "community-inference", "local-inference"]
        assert config.health_check_interval_ms == 30_000
        assert config.auto_fallback_enabled is True
        assert config.selection_strategy == "primary"
        assert config.performance_thresholds == PerformanceThresholds()

    def test_fallbacks_normalized(self):
        config = EnvironmentConfig(
            primary_provider=" local-inference ",
            fallback_providers=" primary-llm, local-inference,,primary-llm ,enterprise-gateway",
        )

        assert config.primary_provider == "local-inference"
        assert config.fallback_providers == ["primary-llm", "enterprise-gateway"]
        assert config.all_providers == ["local-inference", "primary-llm", "enterprise-gateway"]

    @pytest.mark.parametrize(
        "field,value",
        [
            ("health_check_interval_ms", 0),
            ("primary_provider", ""),
            ("selection_strategy", "random"),
            ("context_safety_margin", 1.0),
            ("unhealthy_probe_threshold", 0),
        ],
    )
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            EnvironmentConfig(**{field: value})

    def test_threshold_rates_bounded(self):
        with pytest.raises(ValidationError):
            PerformanceThresholds(min_success_rate=1.5)

    def test_merged_deep_merges_sections(self):
        config = EnvironmentConfig(retry_config=RetrySettings(max_retries=2, base_delay_ms=100))

        merged = config.merged({"retry_config": {"max_retries": 4}, "auto_fallback_enabled": False})

        assert merged.retry_config.max_retries == 4
        assert merged.retry_config.base_delay_ms == 100
        assert merged.auto_fallback_enabled is False
        assert config.retry_config.max_retries == 2

    def test_merged_validates(self):
        with pytest.raises(ValidationError):
            EnvironmentConfig().merged({"retry_config": {"base_delay_ms": 60_000}})


@pytest.mark.unit
class TestEnvHelpers:
    def test_int(self, monkeypatch):
        monkeypatch.setenv("SWITCHYARD_TEST_INT", "42")
        assert get_env_int("SWITCHYARD_TEST_INT") == 42

        monkeypatch.setenv("SWITCHYARD_TEST_INT", "forty")
        with pytest.raises(InvalidConfigError):
            get_env_int("SWITCHYARD_TEST_INT")

        monkeypatch.setenv("SWITCHYARD_TEST_INT", "-1")
        with pytest.raises(InvalidConfigError):
            get_env_int("SWITCHYARD_TEST_INT")

    def test_blank_uses_default(self, monkeypatch):
        monkeypatch.setenv("SWITCHYARD_TEST_INT", "  ")

        assert get_env_int("SWITCHYARD_TEST_INT", 7) == 7

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("Yes", True), ("false", False), ("0", False)])
    def test_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("SWITCHYARD_TEST_BOOL", raw)

        assert get_env_bool("SWITCHYARD_TEST_BOOL") is expected

    def test_list(self, monkeypatch):
        monkeypatch.setenv("SWITCHYARD_TEST_LIST", "a, b,,c ")

        assert get_env_list("SWITCHYARD_TEST_LIST") == ["a", "b", "c"]


@pytest.mark.unit
class TestLayeredLoading:
    def test_defaults_without_file_or_env(self, clean_env, tmp_path):
        clean_env.chdir(tmp_path)

        config = load_environment_config(load_env_file=False)

        assert config == EnvironmentConfig()

    def test_default_file_discovered(self, clean_env, tmp_path):
        clean_env.chdir(tmp_path)
        (tmp_path / ".switchyard.json").write_text(
            json.dumps({"primary_provider": "local-inference", "retry_config": {"max_retries": 1}})
        )

        config = load_environment_config(load_env_file=False)

        assert config.primary_provider == "local-inference"
        assert config.retry_config.max_retries == 1
        assert config.retry_config.base_delay_ms == 1_000

    def test_environment_overrides_file(self, clean_env, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"health_check_interval_ms": 10_000, "auto_fallback_enabled": True}))
        clean_env.setenv(CONFIG_PATH_ENV, str(path))
        clean_env.setenv("SWITCHYARD_AUTO_FALLBACK", "false")
        clean_env.setenv("SWITCHYARD_FALLBACK_PROVIDERS", "local-inference,community-inference")
        clean_env.setenv("SWITCHYARD_MAX_RESPONSE_TIME", "2500")

        config = load_environment_config(load_env_file=False)

        assert config.health_check_interval_ms == 10_000
        assert config.auto_fallback_enabled is False
        assert config.fallback_providers == ["local-inference", "community-inference"]
        assert config.performance_thresholds.max_response_time_ms == 2_500

    def test_explicit_path_wins(self, clean_env, tmp_path):
        env_file = tmp_path / "env.json"
        explicit = tmp_path / "explicit.json"
        env_file.write_text(json.dumps({"primary_provider": "local-inference"}))
        explicit.write_text(json.dumps({"primary_provider": "community-inference"}))
        clean_env.setenv(CONFIG_PATH_ENV, str(env_file))

        assert find_config_file(explicit) == explicit
        assert load_environment_config(explicit, load_env_file=False).primary_provider == "community-inference"

    def test_malformed_file_falls_back_to_defaults(self, clean_env, tmp_path, caplog):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        config = load_environment_config(path, load_env_file=False)

        assert config == EnvironmentConfig()
        assert "Failed to load config" in caplog.text

    def test_invalid_merged_config(self, clean_env, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"selection_strategy": "random"}))

        with pytest.raises(InvalidConfigError) as exc_info:
            load_environment_config(path, load_env_file=False)

        assert "selection_strategy" in exc_info.value.message

    def test_invalid_numeric_override(self, clean_env):
        clean_env.setenv("SWITCHYARD_MAX_RETRIES", "many")

        with pytest.raises(InvalidConfigError):
            environment_overrides()

    def test_overrides_nest_dotted_paths(self, clean_env):
        clean_env.setenv("SWITCHYARD_CIRCUIT_BREAKER_THRESHOLD", "3")
        clean_env.setenv("SWITCHYARD_SELECTION_STRATEGY", " score ")

        assert environment_overrides() == {
            "circuit_breaker_config": {"failure_threshold": 3},
            "selection_strategy": "score",
        }


@pytest.mark.unit
class TestJsonConfigStore:
    def test_save_then_load(self, tmp_path):
        store = JsonConfigStore(tmp_path / "nested" / "config.json")
        config = EnvironmentConfig(primary_provider="community-inference", health_check_interval_ms=5_000)

        store.save(config)

        assert store.load() == config
        assert not (tmp_path / "nested" / "config.tmp").exists()
        assert json.loads(store.path.read_text())["primary_provider"] == "community-inference"

    def test_missing_file_loads_defaults(self, tmp_path):
        assert JsonConfigStore(tmp_path / "absent.json").load() == EnvironmentConfig()

    def test_invalid_file_contents(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"health_check_interval_ms": -5}))

        with pytest.raises(InvalidConfigError):
            JsonConfigStore(path).load()

    def test_non_object_file_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")

        assert JsonConfigStore(path).load() == EnvironmentConfig()
