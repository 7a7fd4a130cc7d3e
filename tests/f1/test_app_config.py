"""Tests for application config loading (F1)."""

from pathlib import Path

import pytest

from studycoach.config import app_config
from studycoach.config.app_config import (
    DB_PATH_ENV,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)
from studycoach.llm.client import LLMConfig


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the loader at a temporary config file."""
    monkeypatch.setattr(app_config, "CONFIG_FILE", tmp_path / "app_config_v1.yaml")
    monkeypatch.delenv(DB_PATH_ENV, raising=False)
    clear_config_cache()
    yield tmp_path / "app_config_v1.yaml"
    clear_config_cache()


class TestLoadAppConfig:
    """Tests for load_app_config."""

    def test_defaults_without_file(self):
        config = load_app_config()
        assert config.generation.default_provider == "openai"
        assert config.generation.speech_format == "mp3"
        assert "lmstudio" in config.providers
        assert config.db_path == Path("db/studycoach.db")

    def test_file_overrides_merge_with_defaults(self, isolated_config):
        isolated_config.write_text(
            "generation:\n  text_model: local-model\n  temperature: 0.2\n"
            "paths:\n  db_path: /tmp/coach.db\n",
            encoding="utf-8",
        )
        config = load_app_config()
        assert config.generation.text_model == "local-model"
        assert config.generation.temperature == 0.2
        assert config.generation.speech_voice == "alloy"
        assert config.db_path == Path("/tmp/coach.db")

    def test_cached_until_reload(self, isolated_config):
        first = load_app_config()
        isolated_config.write_text("generation:\n  text_model: other\n", encoding="utf-8")
        assert load_app_config() is first
        assert load_app_config(force_reload=True).generation.text_model == "other"

    def test_env_overrides_db_path(self, monkeypatch):
        monkeypatch.setenv(DB_PATH_ENV, "/data/override.db")
        assert load_app_config().db_path == Path("/data/override.db")

    def test_provider_lookup(self):
        assert get_provider_config("openai").api_key_env == "OPENAI_API_KEY"
        assert get_provider_config("unknown") is None

    def test_max_retries_reaches_text_client(self, isolated_config):
        isolated_config.write_text("generation:\n  max_retries: 3\n", encoding="utf-8")
        config = LLMConfig.from_app_config(load_app_config())
        assert config.max_retries == 3
