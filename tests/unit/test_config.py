# tests/unit/test_config.py
"""
Unit Tests for configuration loading and validation
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.app.config import (
    Config,
    LLMSettings,
    PipelineSettings,
    get_config,
    reload_config,
    validate_config,
)


@pytest.fixture
def yaml_config(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text(
        "theme:\n"
        "  similarity_threshold: 0.3\n"
        "pipeline:\n"
        "  cache_ttl_hours: 6\n"
        "custom:\n"
        "  nested: value\n",
        encoding="utf-8",
    )
    return str(path)


class TestConfig:
    def test_defaults_without_yaml(self, tmp_path):
        config = Config(str(tmp_path / "missing.yaml"))

        assert config.pipeline.cache_ttl_hours == 24
        assert config.security.max_analysis_attempts == 10
        assert config.filter.duplicate_threshold == 0.9

    def test_yaml_sections_override_stage_settings(self, yaml_config):
        config = Config(yaml_config)

        assert config.theme.similarity_threshold == 0.3
        assert config.pipeline.cache_ttl_hours == 6
        assert config.get("custom.nested") == "value"
        assert config.get("custom.missing", "fallback") == "fallback"

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("SENTIMENT_BATCH_SIZE", "25")
        monkeypatch.setenv("PIPELINE_DISPATCHER", "celery")

        config = Config(str(tmp_path / "missing.yaml"))

        assert config.sentiment.batch_size == 25
        assert config.pipeline.dispatcher == "celery"

    def test_api_key_is_masked(self, tmp_path):
        config = Config(str(tmp_path / "missing.yaml"))
        config.llm = LLMSettings(api_key="k" * 39)

        assert config.to_dict()["llm"]["api_key"] == "***"
        assert config.get_summary()["llm"]["api_key_set"] is True


class TestSettingsValidation:
    def test_unknown_dispatcher_rejected(self):
        with pytest.raises(PydanticValidationError):
            PipelineSettings(dispatcher="carrier-pigeon")

    def test_short_api_key_rejected(self):
        with pytest.raises(PydanticValidationError):
            LLMSettings(api_key="short")


class TestValidateConfig:
    def test_missing_api_key_is_a_warning(self, tmp_path):
        config = Config(str(tmp_path / "missing.yaml"))
        config.llm = LLMSettings(api_key="")
        config.logging.file_path = None

        result = validate_config(config)

        assert result["valid"] is True
        assert any("API key" in w for w in result["warnings"])

    def test_collects_errors(self, tmp_path):
        config = Config(str(tmp_path / "missing.yaml"))
        config.logging.file_path = None
        config.summary.min_words = 200
        config.sentiment.batch_size = 0
        config.theme.min_cluster_size = 0

        result = validate_config(config)

        assert result["valid"] is False
        assert len(result["errors"]) == 3


class TestSingleton:
    def test_get_config_is_cached_until_reload(self, tmp_path):
        first = get_config()

        assert get_config() is first

        reloaded = reload_config(str(tmp_path / "missing.yaml"))
        assert reloaded is not first
        assert get_config() is reloaded
