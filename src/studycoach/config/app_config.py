"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml
with fallback to built-in defaults.

Usage:
    from studycoach.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    provider = get_provider_config("openai")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

# Environment override for the document store location
DB_PATH_ENV = "STUDYCOACH_DB_PATH"


@dataclass
class ProviderConfig:
    """Configuration for a single generative provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class GenerationConfig:
    """Defaults for text and audio generation."""

    default_provider: str = "openai"
    text_model: str = "gpt-4o-mini"
    speech_model: str = "gpt-4o-mini-tts"
    speech_voice: str = "alloy"
    speech_format: str = "mp3"
    temperature: float = 0.7
    max_retries: int = 1
    timeout: int = 120


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    paths: dict[str, str] = field(default_factory=dict)

    @property
    def db_path(self) -> Path:
        """Location of the SQLite document store."""
        override = os.environ.get(DB_PATH_ENV)
        if override:
            return Path(override)
        return Path(self.paths.get("db_path", "db/studycoach.db"))


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
        },
        "generation": {
            "default_provider": "openai",
            "text_model": "gpt-4o-mini",
            "speech_model": "gpt-4o-mini-tts",
            "speech_voice": "alloy",
            "speech_format": "mp3",
            "temperature": 0.7,
            "max_retries": 1,
            "timeout": 120,
        },
        "paths": {
            "db_path": "db/studycoach.db",
            "config_dir": "data/config",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    providers = {}
    for name, pconfig in (data.get("providers") or defaults["providers"]).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    gen_data = {**defaults["generation"], **(data.get("generation") or {})}
    generation = GenerationConfig(
        default_provider=gen_data["default_provider"],
        text_model=gen_data["text_model"],
        speech_model=gen_data["speech_model"],
        speech_voice=gen_data["speech_voice"],
        speech_format=gen_data["speech_format"],
        temperature=float(gen_data["temperature"]),
        max_retries=int(gen_data["max_retries"]),
        timeout=int(gen_data["timeout"]),
    )

    paths = {**defaults["paths"], **(data.get("paths") or {})}

    return AppConfig(providers=providers, generation=generation, paths=paths)


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    data: dict[str, Any]

    if CONFIG_FILE.exists():
        logger.debug("loading_app_config", source=str(CONFIG_FILE))
        data = yaml.safe_load(CONFIG_FILE.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "openai", "lmstudio")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
