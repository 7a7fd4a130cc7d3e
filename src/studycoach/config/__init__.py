"""Configuration package for study coach."""

from studycoach.config.app_config import (
    AppConfig,
    GenerationConfig,
    ProviderConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "GenerationConfig",
    "ProviderConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
