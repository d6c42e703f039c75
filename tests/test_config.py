"""Tests for configuration loading, overrides and validation."""

import dataclasses

import pytest

from errorpipe.config import (
    DEFAULTS,
    AdapterConfig,
    PipelineConfig,
    _parse_bool,
    apply_env_overrides,
    deep_merge,
    load_config,
    load_yaml_config,
    validate_config,
)
from errorpipe.errors import ConfigError


class TestPipelineConfigDefaults:
    def test_defaults(self):
        config = PipelineConfig()
        assert config.environment == "production"
        assert config.max_breadcrumbs == 100
        assert config.sample_rate == 1.0
        assert config.enable_global_handlers is False
        assert config.offline.enabled is True
        assert config.offline.max_size == 100
        assert config.offline.retry_delay == 30.0
        assert config.offline.max_retries == 3
        assert config.privacy.scrub_pii is False

    def test_frozen(self):
        config = PipelineConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.environment = "staging"

    def test_from_empty_dict_matches_defaults(self):
        assert PipelineConfig.from_dict({}) == PipelineConfig()


class TestParseBool:
    def test_truthy(self):
        for value in ("true", "True", "1", "yes", " YES "):
            assert _parse_bool(value) is True

    def test_falsy(self):
        for value in ("false", "0", "no", "", "off"):
            assert _parse_bool(value) is False


class TestDeepMerge:
    def test_nested_merge_leaves_inputs(self):
        base = {"offline": {"enabled": True, "max_size": 100}, "tags": {}}
        merged = deep_merge(base, {"offline": {"max_size": 5}})
        assert merged["offline"] == {"enabled": True, "max_size": 5}
        assert base["offline"]["max_size"] == 100


class TestYamlLoading:
    def test_load_file(self, tmp_path):
        path = tmp_path / "errorpipe.yaml"
        path.write_text(
            "environment: staging\n"
            "sample_rate: 0.5\n"
            "tags:\n"
            "  service: checkout\n"
            "offline:\n"
            "  max_size: 10\n"
            "adapters:\n"
            "  jsonl:\n"
            "    options:\n"
            "      path: out.jsonl\n"
        )
        config = load_config(str(path), environ={})
        assert config.environment == "staging"
        assert config.sample_rate == 0.5
        assert config.tags == {"service": "checkout"}
        assert config.offline.max_size == 10
        assert config.offline.retry_delay == 30.0
        assert config.adapters["jsonl"].options == {"path": "out.jsonl"}

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_yaml_config(str(tmp_path / "absent.yaml")) == {}
        assert load_config(str(tmp_path / "absent.yaml"), environ={}) == PipelineConfig()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_config(str(path)) == {}

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("environment: [unclosed\n")
        with pytest.raises(ConfigError):
            load_yaml_config(str(path))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_yaml_config(str(path))


class TestEnvOverrides:
    def test_overrides_applied(self):
        raw = apply_env_overrides(
            DEFAULTS,
            {
                "ERRORPIPE_ENVIRONMENT": "development",
                "ERRORPIPE_SAMPLE_RATE": "0.25",
                "ERRORPIPE_MIN_LEVEL": "WARNING",
                "ERRORPIPE_DEBUG": "yes",
                "ERRORPIPE_ENABLE_OFFLINE": "false",
                "ERRORPIPE_OFFLINE_MAX_RETRIES": "5",
                "ERRORPIPE_STORAGE_PATH": "/tmp/q.json",
            },
        )
        assert raw["environment"] == "development"
        assert raw["sample_rate"] == 0.25
        assert raw["min_level"] == "warning"
        assert raw["debug"] is True
        assert raw["offline"]["enabled"] is False
        assert raw["offline"]["max_retries"] == 5
        assert raw["offline"]["storage_path"] == "/tmp/q.json"
        assert DEFAULTS["environment"] == "production"

    def test_env_wins_over_file(self, tmp_path):
        path = tmp_path / "errorpipe.yaml"
        path.write_text("environment: staging\n")
        config = load_config(str(path), environ={"ERRORPIPE_ENVIRONMENT": "development"})
        assert config.environment == "development"

    def test_bad_number(self):
        with pytest.raises(ConfigError, match="ERRORPIPE_SAMPLE_RATE"):
            apply_env_overrides({}, {"ERRORPIPE_SAMPLE_RATE": "half"})

    def test_invalid_env_value_fails_validation(self):
        with pytest.raises(ConfigError, match="environment"):
            load_config(None, environ={"ERRORPIPE_ENVIRONMENT": "qa"})


class TestValidation:
    def test_valid_defaults(self):
        validate_config(DEFAULTS)

    def test_all_violations_reported(self):
        raw = deep_merge(DEFAULTS, {"sample_rate": 2, "max_breadcrumbs": -1})
        with pytest.raises(ConfigError) as exc_info:
            validate_config(raw)
        message = str(exc_info.value)
        assert "sample_rate" in message
        assert "max_breadcrumbs" in message

    def test_nested_location(self):
        raw = deep_merge(DEFAULTS, {"offline": {"retry_delay": 0.5}})
        with pytest.raises(ConfigError, match="offline.retry_delay"):
            validate_config(raw)

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError):
            PipelineConfig.from_dict({"sampel_rate": 0.5})

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            PipelineConfig.from_dict({"environment": "qa"})


class TestAdapterConfig:
    def test_falls_back_to_pipeline_values(self):
        config = PipelineConfig.from_dict(
            {
                "environment": "staging",
                "release": "1.2.0",
                "tags": {"service": "api", "team": "core"},
                "adapters": {"console": {"tags": {"team": "payments"}, "max_breadcrumbs": 10}},
            }
        )
        adapter = config.adapter_config("console")
        assert adapter.environment == "staging"
        assert adapter.release == "1.2.0"
        assert adapter.max_breadcrumbs == 10
        assert adapter.tags == {"service": "api", "team": "payments"}

    def test_unconfigured_adapter(self):
        adapter = PipelineConfig().adapter_config("jsonl")
        assert adapter.enabled is True
        assert adapter.max_breadcrumbs == 100
        assert adapter.options == {}

    def test_from_dict_none(self):
        assert AdapterConfig.from_dict(None) == AdapterConfig()
