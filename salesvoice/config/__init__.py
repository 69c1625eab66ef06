"""
Configuration package for salesvoice.

This package contains:
- loaders: YAML file loading and parsing
- security: API key injection from the environment
- defaults: Environment overrides and default values
- settings: Pydantic models and the phased load_config
"""

from .settings import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    ConversationConfig,
    DeepgramConfig,
    LoggingConfig,
    OpenAIConfig,
    ServerConfig,
    load_config,
    validate_runtime_config,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "AppConfig",
    "ConversationConfig",
    "DeepgramConfig",
    "LoggingConfig",
    "OpenAIConfig",
    "ServerConfig",
    "load_config",
    "validate_runtime_config",
]
